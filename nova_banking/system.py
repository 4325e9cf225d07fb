"""
Banking system wiring

Builds every manager against one storage backend. State lives in the store;
the system object only holds collaborators.
"""

from decimal import Decimal
from typing import Optional, Tuple

from .config import NovaConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .accounts import Account, AccountManager
from .transactions import TransactionLog
from .notifications import NotificationCenter, NotificationType
from .profiles import Profile, ProfileManager, UserRole
from .service_requests import RequestManager
from .ledger import LedgerService
from .workflows import RequestReviewWorkflow
from .currency import format_amount
from .logging_config import get_logger, log_action


class BankingSystem:
    """Core banking system with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None, settings: Optional[NovaConfig] = None):
        self.settings = settings or get_config()
        self.storage = storage or create_storage(self.settings.database_url)
        self.logger = get_logger("nova.system")

        self.audit_trail = AuditTrail(self.storage) if self.settings.enable_audit_logging else None
        self.profiles = ProfileManager(self.storage, self.audit_trail)
        self.accounts = AccountManager(
            self.storage, self.audit_trail,
            number_attempts=self.settings.account_number_attempts
        )
        self.transactions = TransactionLog(self.storage)
        self.notifications = NotificationCenter(self.storage)
        self.requests = RequestManager(
            self.storage, self.accounts, self.audit_trail,
            min_initial_deposit=Decimal(self.settings.min_initial_deposit),
            min_fund_request=Decimal(self.settings.min_fund_request),
            request_currency=self.settings.account_request_currency
        )
        self.ledger = LedgerService(
            self.storage, self.accounts, self.transactions, self.notifications, self.requests,
            audit_trail=self.audit_trail,
            account_request_currency=self.settings.account_request_currency,
            account_card_validity_years=self.settings.account_card_validity_years,
            starter_balance=Decimal(self.settings.starter_balance),
            starter_currency=self.settings.starter_currency,
            starter_card_validity_years=self.settings.starter_card_validity_years
        )
        self.review = RequestReviewWorkflow(self.ledger, self.requests, self.profiles, self.accounts)

    def register_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        role: UserRole = UserRole.USER,
        **address: Optional[str]
    ) -> Tuple[Profile, Account]:
        """
        Register a user with a starter account and a welcome notification

        All three records are written in one unit of work.

        Raises:
            ValidationError: Invalid or already registered email
        """
        with self.storage.atomic():
            profile = self.profiles.register_user(first_name, last_name, email, role, **address)
            account = self.ledger.open_starter_account(profile.id)
            self.notifications.notify(
                profile.id, NotificationType.WELCOME,
                account_name=account.name,
                amount=format_amount(account.balance, account.currency)
            )

        log_action(
            self.logger, "info", "User registered",
            user_id=profile.id, action="register_user", resource=f"profile:{profile.id}",
            extra={"role": profile.role.value, "account_id": account.id}
        )
        return profile, account

    def close(self) -> None:
        """Release the storage backend"""
        self.storage.close()
