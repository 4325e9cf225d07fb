"""
Ledger Service

Executes the money-movement operations (transfer, payment, approval of
account and fund requests, rejection) and keeps Account, Transaction,
Notification and request records mutually consistent.

Every operation runs inside a single storage unit of work: balances change
through conditional store-side increments, and any failure (validation,
insufficient funds, store fault) rolls back every write of the operation,
including its audit event.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Dict, Optional, Any, Union
from contextlib import contextmanager

from .storage import StorageInterface
from .accounts import Account, AccountManager, AccountType
from .transactions import Transaction, TransactionLog, TransactionType
from .notifications import NotificationCenter, NotificationType
from .service_requests import RequestManager, RequestKind, RequestStatus
from .audit import AuditTrail, AuditEventType
from .currency import format_amount, to_amount
from .errors import (
    BankingError, InvalidStateError, NotFoundError, ValidationError
)
from .logging_config import get_logger, log_action


@dataclass
class Reconciliation:
    """Result of checking an account balance against its transaction history"""
    account_id: str
    recorded_balance: Decimal
    computed_balance: Decimal
    transaction_count: int

    @property
    def difference(self) -> Decimal:
        return self.recorded_balance - self.computed_balance

    @property
    def is_balanced(self) -> bool:
        return self.difference == Decimal('0')

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "recorded_balance": str(self.recorded_balance),
            "computed_balance": str(self.computed_balance),
            "difference": str(self.difference),
            "transaction_count": self.transaction_count,
            "is_balanced": self.is_balanced,
        }


class LedgerService:
    """
    Balance-mutation rules for the retail ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountManager,
        transactions: TransactionLog,
        notifications: NotificationCenter,
        requests: RequestManager,
        audit_trail: Optional[AuditTrail] = None,
        account_request_currency: str = "INR",
        account_card_validity_years: int = 5,
        starter_balance: Union[Decimal, str] = Decimal('1000.00'),
        starter_currency: str = "USD",
        starter_card_validity_years: int = 3
    ):
        self.storage = storage
        self.accounts = accounts
        self.transactions = transactions
        self.notifications = notifications
        self.requests = requests
        self.audit_trail = audit_trail
        self.account_request_currency = account_request_currency
        self.account_card_validity_years = account_card_validity_years
        self.starter_balance = Decimal(str(starter_balance))
        self.starter_currency = starter_currency
        self.starter_card_validity_years = starter_card_validity_years
        self.logger = get_logger("nova.ledger")

    @contextmanager
    def _unit_of_work(self, action: str, actor_id: Optional[str], resource: str):
        """Run one ledger operation atomically; rejected operations are logged at WARNING"""
        try:
            with self.storage.atomic():
                yield
        except BankingError as e:
            log_action(
                self.logger, "warning", f"{action} rejected: {e}",
                user_id=actor_id, action=action, resource=resource,
                extra={"error": type(e).__name__}
            )
            raise

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               actor_id: Optional[str], metadata: Dict[str, Any]) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=actor_id,
                metadata=metadata
            )

    @staticmethod
    def _positive_amount(amount: Union[Decimal, str, int]) -> Decimal:
        amount = to_amount(amount)
        if amount <= Decimal('0'):
            raise ValidationError("Please enter a valid amount")
        return amount

    def _source_account(self, account_id: str, actor_id: Optional[str]) -> Account:
        """Resolve a source account within the caller's visible account set"""
        account = self.accounts.get_account(account_id)
        if not account or (actor_id is not None and account.user_id != actor_id):
            raise NotFoundError("Account not found")
        if not account.is_active:
            raise InvalidStateError(f"Account {account.account_number} is not active")
        return account

    def transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Union[Decimal, str],
        description: str = "",
        actor_id: Optional[str] = None
    ) -> Transaction:
        """
        Move money between two ledger accounts

        Args:
            from_account_id: Source account (must belong to actor_id when given)
            to_account_id: Destination account
            amount: Positive amount
            description: Free-text description
            actor_id: Calling user

        Returns:
            The completed transfer Transaction

        Raises:
            ValidationError: Same accounts, non-positive amount or currency mismatch
            NotFoundError: Missing or non-visible account
            InvalidStateError: Either account is not active
            InsufficientFundsError: Source balance is less than amount
        """
        if from_account_id == to_account_id:
            raise ValidationError("Source and destination accounts cannot be the same")
        amount = self._positive_amount(amount)

        with self._unit_of_work("transfer", actor_id, f"account:{from_account_id}"):
            source = self._source_account(from_account_id, actor_id)
            destination = self.accounts.get_account(to_account_id)
            if not destination:
                raise NotFoundError("Account not found")
            if not destination.is_active:
                raise InvalidStateError(f"Account {destination.account_number} is not active")
            if source.currency != destination.currency:
                raise ValidationError(
                    f"Cannot transfer between {source.currency} and {destination.currency} accounts"
                )

            self.accounts.debit(source.id, amount)
            self.accounts.credit(destination.id, amount)

            transaction = self.transactions.record(
                TransactionType.TRANSFER, amount,
                from_account_id=source.id,
                to_account_id=destination.id,
                description=description,
                recipient_name=destination.name
            )

            self.notifications.notify(
                source.user_id, NotificationType.TRANSFER_COMPLETE,
                amount=format_amount(amount, source.currency),
                recipient=destination.name
            )

            self._audit(AuditEventType.TRANSFER_COMPLETED, "transaction", transaction.id, actor_id, {
                "from_account_id": source.id,
                "to_account_id": destination.id,
                "amount": amount,
                "currency": source.currency,
                "reference_id": transaction.reference_id
            })

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=actor_id, action="transfer", resource=f"transaction:{transaction.id}",
            extra={"amount": str(amount), "from_account": source.id, "to_account": destination.id}
        )
        return transaction

    def make_payment(
        self,
        from_account_id: str,
        recipient_name: str,
        amount: Union[Decimal, str],
        description: str = "",
        actor_id: Optional[str] = None
    ) -> Transaction:
        """
        Pay a named external recipient from a ledger account

        Raises:
            ValidationError: Empty recipient or non-positive amount
            NotFoundError: Missing or non-visible source account
            InvalidStateError: Source account is not active
            InsufficientFundsError: Source balance is less than amount
        """
        if not recipient_name or not recipient_name.strip():
            raise ValidationError("Please enter recipient name")
        recipient_name = recipient_name.strip()
        amount = self._positive_amount(amount)

        with self._unit_of_work("make_payment", actor_id, f"account:{from_account_id}"):
            source = self._source_account(from_account_id, actor_id)

            self.accounts.debit(source.id, amount)

            transaction = self.transactions.record(
                TransactionType.PAYMENT, amount,
                from_account_id=source.id,
                description=description,
                recipient_name=recipient_name
            )

            self.notifications.notify(
                source.user_id, NotificationType.PAYMENT_PROCESSED,
                amount=format_amount(amount, source.currency),
                recipient=recipient_name
            )

            self._audit(AuditEventType.PAYMENT_COMPLETED, "transaction", transaction.id, actor_id, {
                "from_account_id": source.id,
                "recipient_name": recipient_name,
                "amount": amount,
                "currency": source.currency,
                "reference_id": transaction.reference_id
            })

        log_action(
            self.logger, "info", "Payment processed",
            user_id=actor_id, action="make_payment", resource=f"transaction:{transaction.id}",
            extra={"amount": str(amount), "from_account": source.id, "recipient": recipient_name}
        )
        return transaction

    def approve_account_request(self, request_id: str, reviewer_id: Optional[str] = None) -> Account:
        """
        Open the requested account with its initial deposit

        Creates the Account, an "Initial deposit" Transaction, the approved
        status and one notification to the requester, all or nothing.

        Raises:
            NotFoundError: Unknown request
            InvalidStateError: Request is not pending
        """
        with self._unit_of_work("approve_account_request", reviewer_id, f"account_request:{request_id}"):
            request = self.requests.require_account_request(request_id)
            if not request.is_pending:
                raise InvalidStateError(f"Request {request_id} is already {request.status.value}")

            account = self.accounts.open_account(
                user_id=request.user_id,
                account_type=request.account_type,
                name=request.name,
                balance=request.initial_deposit,
                currency=self.account_request_currency,
                card_validity_years=self.account_card_validity_years,
                actor_id=reviewer_id
            )

            transaction = self.transactions.record(
                TransactionType.DEPOSIT, request.initial_deposit,
                to_account_id=account.id,
                description="Initial deposit"
            )

            self.requests.transition(RequestKind.ACCOUNT, request_id, RequestStatus.APPROVED)

            self.notifications.notify(
                request.user_id, NotificationType.ACCOUNT_REQUEST_APPROVED,
                account_type=request.account_type.value
            )

            self._audit(AuditEventType.ACCOUNT_REQUEST_APPROVED, "account_requests", request_id, reviewer_id, {
                "account_id": account.id,
                "transaction_id": transaction.id,
                "initial_deposit": request.initial_deposit
            })

        log_action(
            self.logger, "info", "Account request approved",
            user_id=reviewer_id, action="approve_account_request", resource=f"account_request:{request_id}",
            extra={"account_id": account.id, "owner_id": request.user_id}
        )
        return account

    def approve_fund_request(self, request_id: str, reviewer_id: Optional[str] = None) -> Transaction:
        """
        Deposit the requested amount into the target account

        Raises:
            NotFoundError: Unknown request or account
            InvalidStateError: Request is not pending or account is not active
        """
        with self._unit_of_work("approve_fund_request", reviewer_id, f"fund_request:{request_id}"):
            request = self.requests.require_fund_request(request_id)
            if not request.is_pending:
                raise InvalidStateError(f"Request {request_id} is already {request.status.value}")

            account = self.accounts.require_account(request.account_id)
            if not account.is_active:
                raise InvalidStateError(f"Account {account.account_number} is not active")

            self.accounts.add_funds(account.id, request.amount)

            transaction = self.transactions.record(
                TransactionType.DEPOSIT, request.amount,
                to_account_id=account.id,
                description="Deposit request"
            )

            self.requests.transition(
                RequestKind.FUND, request_id, RequestStatus.APPROVED,
                transaction_id=transaction.id
            )

            self.notifications.notify(
                request.user_id, NotificationType.DEPOSIT_APPROVED,
                amount=format_amount(request.amount, account.currency)
            )

            self._audit(AuditEventType.FUND_REQUEST_APPROVED, "fund_requests", request_id, reviewer_id, {
                "account_id": account.id,
                "transaction_id": transaction.id,
                "amount": request.amount
            })

        log_action(
            self.logger, "info", "Fund request approved",
            user_id=reviewer_id, action="approve_fund_request", resource=f"fund_request:{request_id}",
            extra={"account_id": account.id, "amount": str(request.amount)}
        )
        return transaction

    def reject_request(self, request_id: str, kind: Union[RequestKind, str],
                       reviewer_id: Optional[str] = None) -> None:
        """
        Reject a pending request; no balance or transaction changes

        Raises:
            NotFoundError: Unknown request
            InvalidStateError: Request is not pending
        """
        kind = RequestKind(kind)
        with self._unit_of_work(f"reject_{kind.value}_request", reviewer_id, f"{kind.value}_request:{request_id}"):
            request = self.requests.transition(kind, request_id, RequestStatus.REJECTED)

            if kind == RequestKind.ACCOUNT:
                self.notifications.notify(request.user_id, NotificationType.ACCOUNT_REQUEST_REJECTED)
                event_type = AuditEventType.ACCOUNT_REQUEST_REJECTED
            else:
                self.notifications.notify(request.user_id, NotificationType.DEPOSIT_REJECTED)
                event_type = AuditEventType.FUND_REQUEST_REJECTED

            self._audit(event_type, f"{kind.value}_requests", request_id, reviewer_id, {
                "requester_id": request.user_id
            })

        log_action(
            self.logger, "info", f"{kind.value.capitalize()} request rejected",
            user_id=reviewer_id, action=f"reject_{kind.value}_request",
            resource=f"{kind.value}_request:{request_id}"
        )

    def open_starter_account(self, user_id: str, actor_id: Optional[str] = None) -> Account:
        """
        Open the checking "Main Account" every new user receives

        The opening balance is recorded as a deposit so the account's
        transaction history sums to its balance.
        """
        with self._unit_of_work("open_starter_account", actor_id or user_id, f"profile:{user_id}"):
            account = self.accounts.open_account(
                user_id=user_id,
                account_type=AccountType.CHECKING,
                name="Main Account",
                balance=self.starter_balance,
                currency=self.starter_currency,
                card_validity_years=self.starter_card_validity_years,
                actor_id=actor_id or user_id
            )
            if account.balance > Decimal('0'):
                self.transactions.record(
                    TransactionType.DEPOSIT, account.balance,
                    to_account_id=account.id,
                    description="Opening deposit"
                )
                self._audit(AuditEventType.FUNDS_DEPOSITED, "account", account.id, actor_id or user_id, {
                    "amount": account.balance,
                    "reason": "opening deposit"
                })

        log_action(
            self.logger, "info", "Starter account opened",
            user_id=actor_id or user_id, action="open_starter_account", resource=f"account:{account.id}"
        )
        return account

    def reconcile_account(self, account_id: str) -> Reconciliation:
        """
        Compare an account's balance with the sum of its completed transaction effects
        """
        with self.storage.atomic():
            account = self.accounts.require_account(account_id)
            history = self.transactions.get_account_transactions(account_id)

        computed = sum((t.balance_effect(account_id) for t in history), Decimal('0'))
        result = Reconciliation(
            account_id=account_id,
            recorded_balance=account.balance,
            computed_balance=computed,
            transaction_count=len(history)
        )

        if not result.is_balanced:
            log_action(
                self.logger, "error", "Account balance does not match transaction history",
                action="reconcile_account", resource=f"account:{account_id}",
                extra=result.to_dict()
            )
        return result
