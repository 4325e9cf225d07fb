"""
Transaction Records Module

Immutable records of money movements: deposits, withdrawals, transfers and
payments. Transactions are inserted once and never updated or deleted; the
log exposes no mutation API beyond record().
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Iterable
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import ValidationError
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Types of banking transactions"""
    DEPOSIT = "deposit"        # Money entering an account from outside the ledger
    WITHDRAWAL = "withdrawal"  # Money leaving an account to outside the ledger
    TRANSFER = "transfer"      # Between two ledger accounts
    PAYMENT = "payment"        # To a named external recipient


class TransactionStatus(Enum):
    """States of a transaction"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


REFERENCE_PREFIXES = {
    TransactionType.DEPOSIT: "DEP",
    TransactionType.WITHDRAWAL: "WDL",
    TransactionType.TRANSFER: "TRF",
    TransactionType.PAYMENT: "PAY",
}


@dataclass
class Transaction(StorageRecord):
    """
    Record of one money movement
    """
    transaction_type: TransactionType
    amount: Decimal
    from_account_id: Optional[str] = None  # None for deposits
    to_account_id: Optional[str] = None    # None for payments and withdrawals
    status: TransactionStatus = TransactionStatus.COMPLETED
    description: Optional[str] = None
    recipient_name: Optional[str] = None
    reference_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))

        # Validate that we have at least one account
        if not self.from_account_id and not self.to_account_id:
            raise ValidationError("Transaction must have at least one account (from_account_id or to_account_id)")

        if self.transaction_type == TransactionType.DEPOSIT and self.from_account_id:
            raise ValidationError("Deposit must not have a source account")
        if self.transaction_type == TransactionType.PAYMENT and self.to_account_id:
            raise ValidationError("Payment must not have a destination account")

        # Validate amount is positive
        if self.amount <= Decimal('0'):
            raise ValidationError("Transaction amount must be positive")

    @property
    def is_completed(self) -> bool:
        """Check if transaction is completed"""
        return self.status == TransactionStatus.COMPLETED

    def balance_effect(self, account_id: str) -> Decimal:
        """
        Signed effect of this transaction on an account's balance

        Only completed transactions move money; anything else has no effect.
        """
        if not self.is_completed:
            return Decimal('0')
        effect = Decimal('0')
        if self.to_account_id == account_id:
            effect += self.amount
        if self.from_account_id == account_id:
            effect -= self.amount
        return effect

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        data = cls._parse_timestamps(data)
        data['transaction_type'] = TransactionType(data['transaction_type'])
        data['status'] = TransactionStatus(data['status'])
        data['amount'] = Decimal(data['amount'])
        return cls(**data)


class TransactionLog:
    """
    Append-only store of transaction records
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"
        self.logger = get_logger("nova.transactions")

    def record(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        description: Optional[str] = None,
        recipient_name: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED
    ) -> Transaction:
        """
        Insert a new transaction record

        Args:
            transaction_type: Type of transaction
            amount: Positive amount
            from_account_id: Source account ID
            to_account_id: Destination account ID
            description: Free-text description
            recipient_name: Display name of the receiving party
            status: Transaction status

        Returns:
            Created Transaction object
        """
        now = datetime.now(timezone.utc)
        transaction_id = str(uuid.uuid4())

        transaction = Transaction(
            id=transaction_id,
            created_at=now,
            updated_at=now,
            transaction_type=transaction_type,
            amount=amount,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            status=status,
            description=description,
            recipient_name=recipient_name,
            reference_id=f"{REFERENCE_PREFIXES[transaction_type]}-{transaction_id[:8].upper()}"
        )

        self.storage.insert(self.table_name, transaction.id, transaction.to_dict())

        log_action(
            self.logger, "debug", f"Transaction recorded: {transaction_type.value}",
            action="record_transaction", resource=f"transaction:{transaction.id}",
            extra={
                "amount": str(transaction.amount),
                "from_account": from_account_id,
                "to_account": to_account_id,
                "reference_id": transaction.reference_id
            }
        )

        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return Transaction.from_dict(data)
        return None

    @staticmethod
    def _newest_first(transactions: List[Transaction], limit: Optional[int]) -> List[Transaction]:
        if limit is not None and limit < 1:
            raise ValidationError("Limit must be a positive number")
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        if limit:
            transactions = transactions[:limit]
        return transactions

    def get_account_transactions(self, account_id: str, limit: Optional[int] = None) -> List[Transaction]:
        """Get transactions where the account is source or destination, newest first"""
        return self.get_user_transactions([account_id], limit)

    def get_user_transactions(self, account_ids: Iterable[str], limit: Optional[int] = None) -> List[Transaction]:
        """Get transactions touching any of the given accounts, newest first"""
        account_ids = set(account_ids)
        if not account_ids:
            return []

        seen: Dict[str, Transaction] = {}
        for account_id in account_ids:
            for field in ("from_account_id", "to_account_id"):
                for data in self.storage.find(self.table_name, {field: account_id}):
                    seen.setdefault(data['id'], Transaction.from_dict(data))

        return self._newest_first(list(seen.values()), limit)
