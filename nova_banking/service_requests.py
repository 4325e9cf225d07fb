"""
Service Requests Module

User-submitted, administrator-reviewed proposals: AccountRequest (open a new
account with an initial deposit) and FundRequest (deposit into an existing
account). Both share one state machine:

    pending --approve--> approved   (terminal)
    pending --reject-->  rejected   (terminal)

Transitions are compare-and-set on status == pending, so a request changes
state exactly once even under concurrent reviewers.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Union
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .accounts import AccountManager, AccountType
from .audit import AuditTrail, AuditEventType
from .currency import Currency, format_amount, to_amount
from .errors import InvalidStateError, NotFoundError, ValidationError


class RequestStatus(Enum):
    """Review states"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestKind(Enum):
    """Kinds of reviewable requests"""
    ACCOUNT = "account"
    FUND = "fund"


@dataclass
class AccountRequest(StorageRecord):
    """Request to open a new account"""
    user_id: str
    account_type: AccountType
    name: str
    initial_deposit: Decimal
    status: RequestStatus = RequestStatus.PENDING

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AccountRequest':
        data = cls._parse_timestamps(data)
        data['account_type'] = AccountType(data['account_type'])
        data['status'] = RequestStatus(data['status'])
        data['initial_deposit'] = Decimal(data['initial_deposit'])
        return cls(**data)


@dataclass
class FundRequest(StorageRecord):
    """Request to deposit funds into an existing account"""
    user_id: str
    account_id: str
    amount: Decimal
    status: RequestStatus = RequestStatus.PENDING
    transaction_id: Optional[str] = None  # Set on approval

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FundRequest':
        data = cls._parse_timestamps(data)
        data['status'] = RequestStatus(data['status'])
        data['amount'] = Decimal(data['amount'])
        return cls(**data)


ServiceRequest = Union[AccountRequest, FundRequest]

REQUEST_MODELS = {
    RequestKind.ACCOUNT: AccountRequest,
    RequestKind.FUND: FundRequest,
}

REQUEST_TABLES = {
    RequestKind.ACCOUNT: "account_requests",
    RequestKind.FUND: "fund_requests",
}


class RequestManager:
    """
    Submission, lookup and state transitions for service requests
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountManager,
        audit_trail: Optional[AuditTrail] = None,
        min_initial_deposit: Decimal = Decimal('1000'),
        min_fund_request: Decimal = Decimal('100'),
        request_currency: str = "INR"
    ):
        self.storage = storage
        self.accounts = accounts
        self.audit_trail = audit_trail
        self.min_initial_deposit = Decimal(str(min_initial_deposit))
        self.min_fund_request = Decimal(str(min_fund_request))
        self.request_currency = Currency.from_code(request_currency)

    def submit_account_request(
        self,
        user_id: str,
        account_type: Union[AccountType, str],
        name: str,
        initial_deposit: Union[Decimal, str]
    ) -> AccountRequest:
        """
        Submit a request for a new account

        Raises:
            ValidationError: Empty name, unknown account type or deposit below the minimum
        """
        account_type = AccountType.parse(account_type)
        if not name or not name.strip():
            raise ValidationError("Account name is required")

        initial_deposit = to_amount(initial_deposit, self.request_currency)
        if initial_deposit < self.min_initial_deposit:
            raise ValidationError(
                f"Minimum initial deposit is {format_amount(self.min_initial_deposit, self.request_currency)}"
            )

        now = datetime.now(timezone.utc)
        request = AccountRequest(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            account_type=account_type,
            name=name.strip(),
            initial_deposit=initial_deposit
        )

        with self.storage.atomic():
            self.storage.insert(REQUEST_TABLES[RequestKind.ACCOUNT], request.id, request.to_dict())
            self._audit(AuditEventType.ACCOUNT_REQUEST_SUBMITTED, request, user_id, {
                "account_type": account_type.value,
                "name": request.name,
                "initial_deposit": initial_deposit
            })

        return request

    def submit_fund_request(
        self,
        user_id: str,
        account_id: str,
        amount: Union[Decimal, str]
    ) -> FundRequest:
        """
        Submit a request to deposit funds into one of the user's accounts

        Raises:
            NotFoundError: Account missing or owned by someone else
            InvalidStateError: Account is not active
            ValidationError: Amount below the minimum
        """
        account = self.accounts.get_account(account_id)
        if not account or account.user_id != user_id:
            raise NotFoundError("Account not found")
        if not account.is_active:
            raise InvalidStateError(f"Account {account.account_number} is not active")

        amount = to_amount(amount, Currency.from_code(account.currency))
        if amount < self.min_fund_request:
            raise ValidationError(
                f"Minimum amount is {format_amount(self.min_fund_request, self.request_currency)}"
            )

        now = datetime.now(timezone.utc)
        request = FundRequest(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            account_id=account_id,
            amount=amount
        )

        with self.storage.atomic():
            self.storage.insert(REQUEST_TABLES[RequestKind.FUND], request.id, request.to_dict())
            self._audit(AuditEventType.FUND_REQUEST_SUBMITTED, request, user_id, {
                "account_id": account_id,
                "amount": amount
            })

        return request

    def get_request(self, kind: RequestKind, request_id: str) -> Optional[ServiceRequest]:
        """Get a request of the given kind by ID"""
        kind = RequestKind(kind)
        data = self.storage.load(REQUEST_TABLES[kind], request_id)
        if data:
            return REQUEST_MODELS[kind].from_dict(data)
        return None

    def require_request(self, kind: RequestKind, request_id: str) -> ServiceRequest:
        """Get a request or raise NotFoundError"""
        request = self.get_request(kind, request_id)
        if not request:
            raise NotFoundError(f"{RequestKind(kind).value.capitalize()} request {request_id} not found")
        return request

    def get_account_request(self, request_id: str) -> Optional[AccountRequest]:
        return self.get_request(RequestKind.ACCOUNT, request_id)

    def get_fund_request(self, request_id: str) -> Optional[FundRequest]:
        return self.get_request(RequestKind.FUND, request_id)

    def require_account_request(self, request_id: str) -> AccountRequest:
        return self.require_request(RequestKind.ACCOUNT, request_id)

    def require_fund_request(self, request_id: str) -> FundRequest:
        return self.require_request(RequestKind.FUND, request_id)

    def list_requests(
        self,
        kind: RequestKind,
        status: Optional[RequestStatus] = None,
        user_id: Optional[str] = None
    ) -> List[ServiceRequest]:
        """List requests of one kind, newest first"""
        kind = RequestKind(kind)
        filters: Dict[str, Any] = {}
        if status:
            filters["status"] = RequestStatus(status)
        if user_id:
            filters["user_id"] = user_id

        requests = [
            REQUEST_MODELS[kind].from_dict(data)
            for data in self.storage.find(REQUEST_TABLES[kind], filters)
        ]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return requests

    def list_account_requests(self, status: Optional[RequestStatus] = None,
                              user_id: Optional[str] = None) -> List[AccountRequest]:
        return self.list_requests(RequestKind.ACCOUNT, status, user_id)

    def list_fund_requests(self, status: Optional[RequestStatus] = None,
                           user_id: Optional[str] = None) -> List[FundRequest]:
        return self.list_requests(RequestKind.FUND, status, user_id)

    def transition(
        self,
        kind: RequestKind,
        request_id: str,
        new_status: RequestStatus,
        **changes: Any
    ) -> ServiceRequest:
        """
        Move a pending request to a terminal status

        Args:
            kind: Request kind
            request_id: Request to transition
            new_status: APPROVED or REJECTED
            **changes: Extra fields to set in the same write (e.g. transaction_id)

        Returns:
            The updated request

        Raises:
            NotFoundError: If the request does not exist
            InvalidStateError: If the request is not pending (including a lost race)
        """
        kind = RequestKind(kind)
        new_status = RequestStatus(new_status)
        if new_status == RequestStatus.PENDING:
            raise InvalidStateError("Requests cannot transition back to pending")

        request = self.require_request(kind, request_id)
        if not request.is_pending:
            raise InvalidStateError(f"Request {request_id} is already {request.status.value}")

        updated = self.storage.update(
            REQUEST_TABLES[kind], request_id,
            {"status": new_status, **changes},
            expected={"status": RequestStatus.PENDING}
        )
        if updated is None:
            raise InvalidStateError(f"Request {request_id} is no longer pending")

        return REQUEST_MODELS[kind].from_dict(updated)

    def _audit(self, event_type: AuditEventType, request: ServiceRequest,
               user_id: str, metadata: Dict[str, Any]) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=REQUEST_TABLES[RequestKind.ACCOUNT if isinstance(request, AccountRequest) else RequestKind.FUND],
                entity_id=request.id,
                user_id=user_id,
                metadata=metadata
            )
