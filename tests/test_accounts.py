"""
Tests for account management

Covers account opening, account number uniqueness, balance mutations and
status changes.
"""

import pytest
import re
from decimal import Decimal
from datetime import datetime, timezone

from nova_banking.storage import InMemoryStorage
from nova_banking.audit import AuditTrail, AuditEventType
from nova_banking.accounts import (
    Account, AccountManager, AccountType, AccountStatus,
    card_expiry, generate_account_number, generate_card_number
)
from nova_banking.errors import (
    DuplicateRecordError, InsufficientFundsError, InvalidStateError,
    NotFoundError, ValidationError
)


class TestAccountModel:
    """Test Account dataclass and helpers"""

    def test_negative_balance_rejected(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            Account(
                id="acc", created_at=now, updated_at=now, user_id="u1",
                account_type=AccountType.CHECKING, name="Main Account",
                balance=Decimal("-1"), currency="USD", account_number="1234567890",
                card_number="•••• 1234", card_expiry="01/30"
            )

    def test_account_type_parse(self):
        assert AccountType.parse("Savings") is AccountType.SAVINGS
        assert AccountType.parse(AccountType.FIXED_DEPOSIT) is AccountType.FIXED_DEPOSIT
        with pytest.raises(ValidationError, match="Invalid account type"):
            AccountType.parse("brokerage")

    def test_generated_numbers(self):
        assert re.fullmatch(r"[1-9]\d{9}", generate_account_number())
        assert re.fullmatch(r"•••• \d{4}", generate_card_number())

    def test_card_expiry(self):
        now = datetime(2024, 3, 15, tzinfo=timezone.utc)
        assert card_expiry(5, now) == "03/29"
        assert card_expiry(3, now) == "03/27"


class TestAccountManager:
    """Test AccountManager operations"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = AccountManager(self.storage, self.audit_trail)

    def test_open_account(self):
        account = self.manager.open_account(
            "user_1", AccountType.SAVINGS, "Travel Fund",
            balance=Decimal("2000"), currency="INR"
        )

        assert account.user_id == "user_1"
        assert account.account_type == AccountType.SAVINGS
        assert account.balance == Decimal("2000.00")
        assert account.currency == "INR"
        assert account.status == AccountStatus.ACTIVE
        assert len(account.account_number) == 10

        stored = self.manager.get_account(account.id)
        assert stored.account_number == account.account_number
        assert self.manager.get_account_by_number(account.account_number).id == account.id

        events = self.audit_trail.get_events_for_entity("account", account.id)
        assert events[0].event_type == AuditEventType.ACCOUNT_OPENED

    def test_open_account_validation(self):
        with pytest.raises(ValidationError):
            self.manager.open_account("user_1", "checking", "   ")
        with pytest.raises(ValidationError):
            self.manager.open_account("user_1", "checking", "Main", currency="XYZ")
        with pytest.raises(ValidationError):
            self.manager.open_account("user_1", "loan", "Main")

    def test_account_number_collision_retries(self):
        numbers = iter(["1111111111", "1111111111", "2222222222"])
        manager = AccountManager(self.storage, number_generator=lambda: next(numbers))

        first = manager.open_account("user_1", "checking", "First")
        second = manager.open_account("user_2", "checking", "Second")

        assert first.account_number == "1111111111"
        assert second.account_number == "2222222222"

    def test_account_number_attempts_exhausted(self):
        manager = AccountManager(self.storage, number_generator=lambda: "1111111111", number_attempts=3)
        manager.open_account("user_1", "checking", "First")

        with pytest.raises(DuplicateRecordError):
            manager.open_account("user_2", "checking", "Second")

        assert self.storage.count("accounts") == 1

    def test_get_user_accounts_and_total_balance(self):
        self.manager.open_account("user_1", "checking", "Main", balance=Decimal("1000"), currency="USD")
        self.manager.open_account("user_1", "savings", "Savings", balance=Decimal("250.50"), currency="USD")
        self.manager.open_account("user_1", "savings", "Rupees", balance=Decimal("5000"), currency="INR")
        self.manager.open_account("user_2", "checking", "Other", balance=Decimal("10"), currency="USD")

        accounts = self.manager.get_user_accounts("user_1")
        assert [a.name for a in accounts] == ["Main", "Savings", "Rupees"]
        assert self.manager.total_balance("user_1") == {
            "USD": Decimal("1250.50"),
            "INR": Decimal("5000.00")
        }

    def test_require_missing_account(self):
        with pytest.raises(NotFoundError):
            self.manager.require_account("missing")

    def test_credit_and_debit(self):
        account = self.manager.open_account("user_1", "checking", "Main", balance=Decimal("100"))

        assert self.manager.credit(account.id, Decimal("50")) == Decimal("150.00")
        assert self.manager.debit(account.id, Decimal("150")) == Decimal("0.00")
        assert self.manager.get_account(account.id).balance == Decimal("0")

    def test_debit_insufficient_funds(self):
        account = self.manager.open_account("user_1", "checking", "Main", balance=Decimal("50"))

        with pytest.raises(InsufficientFundsError, match="Insufficient funds"):
            self.manager.debit(account.id, Decimal("100"))

        assert self.manager.get_account(account.id).balance == Decimal("50.00")

    def test_non_positive_amounts_rejected(self):
        account = self.manager.open_account("user_1", "checking", "Main", balance=Decimal("50"))

        with pytest.raises(ValidationError):
            self.manager.add_funds(account.id, Decimal("0"))
        with pytest.raises(ValidationError):
            self.manager.debit(account.id, Decimal("-5"))

    def test_freeze_and_close(self):
        account = self.manager.open_account("user_1", "checking", "Main")

        frozen = self.manager.update_status(account.id, AccountStatus.FROZEN, "Suspicious activity", actor_id="admin")
        assert frozen.status == AccountStatus.FROZEN
        assert not frozen.is_active

        closed = self.manager.update_status(account.id, AccountStatus.CLOSED, "Customer request")
        assert closed.status == AccountStatus.CLOSED

        with pytest.raises(InvalidStateError):
            self.manager.update_status(account.id, AccountStatus.ACTIVE, "Reopen")

        events = self.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_STATUS_CHANGED)
        assert [e.metadata["new_status"] for e in events] == ["frozen", "closed"]

    def test_close_requires_zero_balance(self):
        account = self.manager.open_account("user_1", "checking", "Main", balance=Decimal("10"))

        with pytest.raises(InvalidStateError):
            self.manager.update_status(account.id, AccountStatus.CLOSED, "Customer request")

        assert self.manager.get_account(account.id).status == AccountStatus.ACTIVE

    def test_closed_accounts_excluded_from_total(self):
        account = self.manager.open_account("user_1", "checking", "Main")
        self.manager.open_account("user_1", "savings", "Savings", balance=Decimal("40"))
        self.manager.update_status(account.id, AccountStatus.CLOSED, "Customer request")

        assert self.manager.total_balance("user_1") == {"USD": Decimal("40.00")}
        assert len(self.manager.get_user_accounts("user_1", active_only=True)) == 1
