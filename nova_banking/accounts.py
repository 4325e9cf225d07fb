"""
Account Management Module

Manages customer accounts, their lifecycle states and balances. Balances only
change through store-side increments, so concurrent deposits and debits never
lose updates and a balance can never go below zero.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Any
from enum import Enum
import secrets
import uuid

from .currency import Currency, to_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import (
    DuplicateRecordError, InsufficientFundsError, InvalidStateError,
    NotFoundError, ValidationError
)
from .logging_config import get_logger, log_action


ZERO = Decimal('0')


class AccountType(Enum):
    """Account product types"""
    CHECKING = "checking"
    SAVINGS = "savings"
    FIXED_DEPOSIT = "fixed_deposit"

    @classmethod
    def parse(cls, value: Any) -> 'AccountType':
        """Resolve an account type from its value, raising ValidationError if unknown"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid account type: {value}")


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "active"      # Normal operation
    FROZEN = "frozen"      # Temporarily suspended
    CLOSED = "closed"      # Permanently closed


@dataclass
class Account(StorageRecord):
    """
    Balance-holding account owned by one user
    """
    user_id: str
    account_type: AccountType
    name: str
    balance: Decimal
    currency: str
    account_number: str
    card_number: str
    card_expiry: str
    status: AccountStatus = AccountStatus.ACTIVE

    def __post_init__(self):
        if not isinstance(self.balance, Decimal):
            self.balance = Decimal(str(self.balance))
        if self.balance < ZERO:
            raise ValidationError("Account balance cannot be negative")

    @property
    def is_active(self) -> bool:
        """Check if account can send and receive money"""
        return self.status == AccountStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        data = cls._parse_timestamps(data)
        data['account_type'] = AccountType(data['account_type'])
        data['status'] = AccountStatus(data['status'])
        data['balance'] = Decimal(data['balance'])
        return cls(**data)


def generate_account_number() -> str:
    """Random 10-digit account number (never starts with 0)"""
    return str(1000000000 + secrets.randbelow(9000000000))


def generate_card_number() -> str:
    """Masked card number showing the last four digits"""
    return f"•••• {1000 + secrets.randbelow(9000)}"


def card_expiry(validity_years: int, now: Optional[datetime] = None) -> str:
    """Card expiry as MM/YY, validity_years from now"""
    now = now or datetime.now(timezone.utc)
    return f"{now.month:02d}/{(now.year + validity_years) % 100:02d}"


class AccountManager:
    """
    Manages account lifecycle and balance mutations
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        number_generator: Callable[[], str] = generate_account_number,
        number_attempts: int = 5
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.number_generator = number_generator
        self.number_attempts = number_attempts
        self.accounts_table = "accounts"
        self.logger = get_logger("nova.accounts")

    def open_account(
        self,
        user_id: str,
        account_type: AccountType,
        name: str,
        balance: Decimal = ZERO,
        currency: str = "USD",
        card_validity_years: int = 5,
        actor_id: Optional[str] = None
    ) -> Account:
        """
        Open a new account with generated account number and card details

        Args:
            user_id: ID of account owner
            account_type: Type of account product
            name: Display name
            balance: Opening balance
            currency: ISO currency code
            card_validity_years: Years until the card expires
            actor_id: User performing the action (for the audit trail)

        Returns:
            Created Account object

        Raises:
            ValidationError: If the name is empty or the type or currency is unknown
            DuplicateRecordError: If no unique account number could be generated
        """
        account_type = AccountType.parse(account_type)
        currency_code = Currency.from_code(currency).code
        if not name or not name.strip():
            raise ValidationError("Account name is required")

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            last_error: Optional[DuplicateRecordError] = None
            for _ in range(max(1, self.number_attempts)):
                account_number = self.number_generator()
                if self.storage.find(self.accounts_table, {"account_number": account_number}):
                    last_error = DuplicateRecordError(f"Account number {account_number} already in use")
                    continue

                account = Account(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    user_id=user_id,
                    account_type=account_type,
                    name=name.strip(),
                    balance=to_amount(balance),
                    currency=currency_code,
                    account_number=account_number,
                    card_number=generate_card_number(),
                    card_expiry=card_expiry(card_validity_years, now)
                )
                try:
                    self.storage.insert(
                        self.accounts_table, account.id, account.to_dict(),
                        unique_fields=("account_number",)
                    )
                except DuplicateRecordError as e:
                    last_error = e
                    continue
                break
            else:
                log_action(
                    self.logger, "error", "Account number generation exhausted",
                    user_id=actor_id, action="open_account",
                    extra={"attempts": self.number_attempts}
                )
                raise last_error

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_OPENED,
                    entity_type="account",
                    entity_id=account.id,
                    user_id=actor_id,
                    metadata={
                        "owner_id": user_id,
                        "account_type": account_type.value,
                        "account_number": account_number,
                        "opening_balance": account.balance,
                        "currency": currency_code
                    }
                )

        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return Account.from_dict(account_dict)
        return None

    def require_account(self, account_id: str) -> Account:
        """Get account by ID or raise NotFoundError"""
        account = self.get_account(account_id)
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.accounts_table, {"account_number": account_number})
        if accounts:
            return Account.from_dict(accounts[0])
        return None

    def get_user_accounts(self, user_id: str, active_only: bool = False) -> List[Account]:
        """Get all accounts owned by a user, oldest first"""
        accounts = [
            Account.from_dict(data)
            for data in self.storage.find(self.accounts_table, {"user_id": user_id})
        ]
        if active_only:
            accounts = [a for a in accounts if a.is_active]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def total_balance(self, user_id: str) -> Dict[str, Decimal]:
        """Sum of balances across a user's non-closed accounts, per currency"""
        totals: Dict[str, Decimal] = {}
        for account in self.get_user_accounts(user_id):
            if account.status == AccountStatus.CLOSED:
                continue
            totals[account.currency] = totals.get(account.currency, ZERO) + account.balance
        return totals

    def add_funds(self, account_id: str, amount: Decimal) -> Decimal:
        """
        Atomically increment an account balance

        Returns:
            The new balance
        """
        amount = Decimal(str(amount))
        if amount <= ZERO:
            raise ValidationError("Please enter a valid amount")

        new_balance = self.storage.increment(self.accounts_table, account_id, "balance", amount, minimum=ZERO)
        if new_balance is None:
            # Only reachable if the stored balance was already negative
            raise InvalidStateError(f"Account {account_id} has an invalid balance")
        return new_balance

    def credit(self, account_id: str, amount: Decimal) -> Decimal:
        """Credit an account (receiving side of a transfer)"""
        return self.add_funds(account_id, amount)

    def debit(self, account_id: str, amount: Decimal) -> Decimal:
        """
        Atomically decrement an account balance if it covers the amount

        Returns:
            The new balance

        Raises:
            InsufficientFundsError: If balance < amount; the balance is unchanged
        """
        amount = Decimal(str(amount))
        if amount <= ZERO:
            raise ValidationError("Please enter a valid amount")

        new_balance = self.storage.increment(self.accounts_table, account_id, "balance", -amount, minimum=ZERO)
        if new_balance is None:
            raise InsufficientFundsError("Insufficient funds")
        return new_balance

    def update_status(
        self,
        account_id: str,
        status: AccountStatus,
        reason: str,
        actor_id: Optional[str] = None
    ) -> Account:
        """
        Change account status. Accounts are never deleted; closing requires a zero balance.
        """
        status = AccountStatus(status)
        with self.storage.atomic():
            account = self.require_account(account_id)
            if account.status == AccountStatus.CLOSED:
                raise InvalidStateError(f"Account {account_id} is closed")
            if status == AccountStatus.CLOSED and account.balance != ZERO:
                raise InvalidStateError("Cannot close account with non-zero balance")

            updated = self.storage.update(
                self.accounts_table, account_id,
                {"status": status},
                expected={"status": account.status}
            )
            if updated is None:
                raise InvalidStateError(f"Account {account_id} changed concurrently")

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_STATUS_CHANGED,
                    entity_type="account",
                    entity_id=account_id,
                    user_id=actor_id,
                    metadata={
                        "old_status": account.status.value,
                        "new_status": status.value,
                        "reason": reason
                    }
                )

        log_action(
            self.logger, "info", f"Account status changed to {status.value}",
            user_id=actor_id, action="update_account_status", resource=f"account:{account_id}",
            extra={"old_status": account.status.value, "reason": reason}
        )
        return Account.from_dict(updated)
