"""
Request Review Workflow Module

Administrator-facing review of account and fund requests: listing requests
joined with the requester's profile (and, for fund requests, the target
account), and approving or rejecting them through the Ledger Service.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Union

from .accounts import AccountManager
from .ledger import LedgerService
from .profiles import ProfileManager
from .service_requests import (
    RequestKind, RequestManager, RequestStatus
)
from .errors import PermissionDeniedError
from .logging_config import get_logger, log_action


CONFIRMATIONS = {
    (RequestKind.ACCOUNT, RequestStatus.APPROVED): "Account request approved successfully",
    (RequestKind.ACCOUNT, RequestStatus.REJECTED): "Account request rejected",
    (RequestKind.FUND, RequestStatus.APPROVED): "Fund request approved successfully",
    (RequestKind.FUND, RequestStatus.REJECTED): "Fund request rejected",
}


@dataclass
class ReviewOutcome:
    """Result of an administrator action, with the confirmation text shown to the reviewer"""
    request_id: str
    kind: RequestKind
    status: RequestStatus
    message: str
    result_id: Optional[str] = None  # Created account or transaction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "message": self.message,
            "result_id": self.result_id,
        }


class RequestReviewWorkflow:
    """
    Admin review of pending requests
    """

    def __init__(
        self,
        ledger: LedgerService,
        requests: RequestManager,
        profiles: ProfileManager,
        accounts: AccountManager
    ):
        self.ledger = ledger
        self.requests = requests
        self.profiles = profiles
        self.accounts = accounts
        self.logger = get_logger("nova.workflows")

    def _require_admin(self, actor_id: Optional[str], action: str) -> None:
        if not self.profiles.is_admin(actor_id):
            log_action(
                self.logger, "warning", "Review action refused for non-admin caller",
                user_id=actor_id, action=action
            )
            raise PermissionDeniedError("You are not authorized to access this page")

    def _requester(self, user_id: str) -> Dict[str, Optional[str]]:
        profile = self.profiles.get_profile(user_id)
        if not profile:
            return {"first_name": None, "last_name": None, "email": None}
        return {
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "email": profile.email,
        }

    def list_account_requests(self, actor_id: str,
                              status: Optional[RequestStatus] = None) -> List[Dict[str, Any]]:
        """Account requests joined with requester profile, newest first"""
        self._require_admin(actor_id, "list_account_requests")

        rows = []
        for request in self.requests.list_account_requests(status=status):
            row = request.to_dict()
            row["profile"] = self._requester(request.user_id)
            rows.append(row)
        return rows

    def list_fund_requests(self, actor_id: str,
                           status: Optional[RequestStatus] = None) -> List[Dict[str, Any]]:
        """Fund requests joined with requester profile and target account, newest first"""
        self._require_admin(actor_id, "list_fund_requests")

        rows = []
        for request in self.requests.list_fund_requests(status=status):
            row = request.to_dict()
            row["profile"] = self._requester(request.user_id)
            account = self.accounts.get_account(request.account_id)
            row["account"] = {
                "name": account.name if account else None,
                "account_number": account.account_number if account else None,
            }
            rows.append(row)
        return rows

    def list_users(self, actor_id: str, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """Profiles with account count and per-currency total balance, oldest first"""
        self._require_admin(actor_id, "list_users")

        rows = []
        for profile in self.profiles.list_profiles(search=search):
            row = profile.to_dict()
            row["account_count"] = len(self.accounts.get_user_accounts(profile.id))
            row["total_balance"] = {
                currency: str(total)
                for currency, total in self.accounts.total_balance(profile.id).items()
            }
            rows.append(row)
        return rows

    def approve(self, actor_id: str, kind: Union[RequestKind, str], request_id: str) -> ReviewOutcome:
        """
        Approve a pending request

        Raises:
            PermissionDeniedError: Caller is not an admin
            NotFoundError, InvalidStateError: Propagated from the Ledger Service
        """
        kind = RequestKind(kind)
        self._require_admin(actor_id, f"approve_{kind.value}_request")

        if kind == RequestKind.ACCOUNT:
            result_id = self.ledger.approve_account_request(request_id, reviewer_id=actor_id).id
        else:
            result_id = self.ledger.approve_fund_request(request_id, reviewer_id=actor_id).id

        return ReviewOutcome(
            request_id=request_id,
            kind=kind,
            status=RequestStatus.APPROVED,
            message=CONFIRMATIONS[(kind, RequestStatus.APPROVED)],
            result_id=result_id
        )

    def reject(self, actor_id: str, kind: Union[RequestKind, str], request_id: str) -> ReviewOutcome:
        """
        Reject a pending request

        Raises:
            PermissionDeniedError: Caller is not an admin
            NotFoundError, InvalidStateError: Propagated from the Ledger Service
        """
        kind = RequestKind(kind)
        self._require_admin(actor_id, f"reject_{kind.value}_request")

        self.ledger.reject_request(request_id, kind, reviewer_id=actor_id)

        return ReviewOutcome(
            request_id=request_id,
            kind=kind,
            status=RequestStatus.REJECTED,
            message=CONFIRMATIONS[(kind, RequestStatus.REJECTED)]
        )
