"""
Profile Management Module

User profiles and roles. The profile store doubles as the identity
collaborator: callers are identified by an opaque user id and the role flag
held on their profile.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import DuplicateRecordError, NotFoundError, ValidationError


EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

UPDATABLE_FIELDS = (
    "first_name", "last_name", "address_line", "city", "state", "postal_code", "country"
)


class UserRole(Enum):
    """Caller roles"""
    USER = "user"
    ADMIN = "admin"


@dataclass
class Profile(StorageRecord):
    """
    Registered user profile
    """
    first_name: str
    last_name: str
    email: str
    role: UserRole = UserRole.USER
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def __post_init__(self):
        if not self.first_name or not self.first_name.strip():
            raise ValidationError("First name is required")
        if not re.match(EMAIL_PATTERN, self.email or ""):
            raise ValidationError("Invalid email format")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Profile':
        data = cls._parse_timestamps(data)
        data['role'] = UserRole(data['role'])
        return cls(**data)


class ProfileManager:
    """
    Manages user registration and profile data
    """

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.profiles_table = "profiles"

    def register_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        role: UserRole = UserRole.USER,
        **address: Optional[str]
    ) -> Profile:
        """
        Create a new profile

        Args:
            first_name: User's first name
            last_name: User's last name
            email: Email address (unique, case-insensitive)
            role: Caller role
            **address: Optional address fields

        Returns:
            Created Profile object

        Raises:
            ValidationError: If the email is invalid or already registered
        """
        unknown = set(address) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

        email = (email or "").strip().lower()
        now = datetime.now(timezone.utc)
        profile = Profile(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=(first_name or "").strip(),
            last_name=(last_name or "").strip(),
            email=email,
            role=UserRole(role),
            **address
        )

        with self.storage.atomic():
            if self.find_by_email(email):
                raise ValidationError("User with this email already exists")
            try:
                self.storage.insert(self.profiles_table, profile.id, profile.to_dict(), unique_fields=("email",))
            except DuplicateRecordError as e:
                raise ValidationError("User with this email already exists") from e

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.USER_REGISTERED,
                    entity_type="profile",
                    entity_id=profile.id,
                    user_id=profile.id,
                    metadata={"email": email, "role": profile.role.value}
                )

        return profile

    def get_profile(self, user_id: str) -> Optional[Profile]:
        """Get profile by user ID"""
        data = self.storage.load(self.profiles_table, user_id)
        if data:
            return Profile.from_dict(data)
        return None

    def require_profile(self, user_id: str) -> Profile:
        """Get profile by user ID or raise NotFoundError"""
        profile = self.get_profile(user_id)
        if not profile:
            raise NotFoundError(f"User {user_id} not found")
        return profile

    def find_by_email(self, email: str) -> Optional[Profile]:
        """Get profile by email address"""
        profiles = self.storage.find(self.profiles_table, {"email": (email or "").strip().lower()})
        if profiles:
            return Profile.from_dict(profiles[0])
        return None

    def update_profile(self, user_id: str, **changes: Optional[str]) -> Profile:
        """Update name and address fields"""
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        if "first_name" in changes and not (changes["first_name"] or "").strip():
            raise ValidationError("First name is required")

        with self.storage.atomic():
            old = self.require_profile(user_id)
            updated = self.storage.update(self.profiles_table, user_id, changes)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.PROFILE_UPDATED,
                    entity_type="profile",
                    entity_id=user_id,
                    user_id=user_id,
                    metadata={
                        "old_data": {k: getattr(old, k) for k in changes},
                        "new_data": changes
                    }
                )

        return Profile.from_dict(updated)

    def list_profiles(self, role: Optional[UserRole] = None, search: Optional[str] = None) -> List[Profile]:
        """
        List profiles, oldest first

        Args:
            role: Only profiles with this role
            search: Case-insensitive substring of the full name or email
        """
        filters = {"role": role} if role else {}
        profiles = [Profile.from_dict(data) for data in self.storage.find(self.profiles_table, filters)]
        term = (search or "").strip().lower()
        if term:
            profiles = [p for p in profiles if term in p.full_name.lower() or term in p.email.lower()]
        profiles.sort(key=lambda p: p.created_at)
        return profiles

    def is_admin(self, user_id: Optional[str]) -> bool:
        """Role check for the calling identity; unknown users are not admins"""
        if not user_id:
            return False
        profile = self.get_profile(user_id)
        return bool(profile and profile.is_admin)
