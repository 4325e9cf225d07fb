"""
Notification Module

In-app notifications emitted as side effects of approvals, rejections,
transfers and payments. Notifications are never deleted; the only mutation
is the recipient marking them as read.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import NotFoundError
from .logging_config import get_logger


class NotificationType(Enum):
    """Notification kinds with their title and message template"""
    TRANSFER_COMPLETE = (
        "transfer_complete", "Transfer Complete",
        "Your transfer of {amount} to {recipient} has been completed."
    )
    PAYMENT_PROCESSED = (
        "payment_processed", "Payment Processed",
        "Your payment of {amount} to {recipient} has been processed."
    )
    ACCOUNT_REQUEST_APPROVED = (
        "account_request_approved", "Account Request Approved",
        "Your request for a new {account_type} account has been approved."
    )
    ACCOUNT_REQUEST_REJECTED = (
        "account_request_rejected", "Account Request Rejected",
        "Your account request has been rejected. Please contact customer support for more information."
    )
    DEPOSIT_APPROVED = (
        "deposit_approved", "Deposit Approved",
        "Your deposit request of {amount} has been approved."
    )
    DEPOSIT_REJECTED = (
        "deposit_rejected", "Deposit Request Rejected",
        "Your deposit request has been rejected. Please contact customer support for more information."
    )
    WELCOME = (
        "welcome", "Welcome to Nova Banking",
        "Registration successful! Your {account_name} is ready with an opening balance of {amount}."
    )

    def __init__(self, key: str, title: str, message_template: str):
        self.key = key
        self.title = title
        self.message_template = message_template

    def render(self, **params: Any) -> str:
        """Fill the message template"""
        return self.message_template.format(**params)


@dataclass
class Notification(StorageRecord):
    """Individual notification addressed to one user"""
    user_id: str
    title: str
    message: str
    read: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(**cls._parse_timestamps(data))


class NotificationCenter:
    """
    Creates and reads per-user notifications
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.notifications_table = "notifications"
        self.logger = get_logger("nova.notifications")

    def notify(self, user_id: str, notification_type: NotificationType, **params: Any) -> Notification:
        """
        Create a notification from a template

        Args:
            user_id: Recipient
            notification_type: Template to use
            **params: Values for the message placeholders

        Returns:
            Created Notification
        """
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            title=notification_type.title,
            message=notification_type.render(**params)
        )
        self.storage.insert(self.notifications_table, notification.id, notification.to_dict())
        self.logger.debug(f"Notification {notification_type.key} queued for {user_id}")
        return notification

    def get_notification(self, notification_id: str, user_id: str) -> Notification:
        """Get a notification visible to the user"""
        data = self.storage.load(self.notifications_table, notification_id)
        if not data or data.get('user_id') != user_id:
            raise NotFoundError(f"Notification {notification_id} not found")
        return Notification.from_dict(data)

    def get_user_notifications(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        """Get notifications for a user, newest first"""
        filters: Dict[str, Any] = {"user_id": user_id}
        if unread_only:
            filters["read"] = False

        notifications = [
            Notification.from_dict(data)
            for data in self.storage.find(self.notifications_table, filters)
        ]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications

    def unread_count(self, user_id: str) -> int:
        """Count of unread notifications for a user"""
        return len(self.storage.find(self.notifications_table, {"user_id": user_id, "read": False}))

    def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        """
        Mark a notification as read. Only the recipient may do so; another
        user's notification is reported as not found.
        """
        self.get_notification(notification_id, user_id)
        updated = self.storage.update(self.notifications_table, notification_id, {"read": True})
        return Notification.from_dict(updated)

    def mark_all_as_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read; returns how many changed"""
        changed = 0
        with self.storage.atomic():
            for data in self.storage.find(self.notifications_table, {"user_id": user_id, "read": False}):
                if self.storage.update(self.notifications_table, data['id'], {"read": True}, expected={"read": False}):
                    changed += 1
        return changed
