"""
FastAPI REST API Module

REST endpoints for registration, account views, transfers, payments,
service requests, notifications and administrator review. The caller is
identified by the X-User-Id header. Amounts travel as decimal strings.
"""

from datetime import datetime, timezone
from typing import Optional
from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .config import get_config
from .system import BankingSystem
from .accounts import Account
from .service_requests import RequestKind, RequestStatus
from .errors import (
    BankingError, InsufficientFundsError, InvalidStateError, NotFoundError,
    PermissionDeniedError, StoreError, ValidationError
)
from .logging_config import get_logger, log_action, setup_logging


# Pydantic models for API requests
class RegisterUserRequest(BaseModel):
    first_name: str
    last_name: str = ""
    email: str
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class TransferRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    description: str = ""


class PaymentRequest(BaseModel):
    from_account_id: str
    recipient_name: str
    amount: str = Field(..., description="Decimal amount as string")
    description: str = ""


class CreateAccountRequest(BaseModel):
    account_type: str = Field(..., description="Account type (checking, savings, fixed_deposit)")
    name: str
    initial_deposit: str = Field(..., description="Decimal amount as string")


class CreateFundRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")


# Error mapping, most specific first
ERROR_STATUS_CODES = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (InsufficientFundsError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_code_for(exc: BankingError) -> int:
    """HTTP status for a domain error"""
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_400_BAD_REQUEST


logger = get_logger("nova.api")


# Dependencies
def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.banking_system


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Opaque caller identity supplied by the identity provider"""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


def _visible_account(system: BankingSystem, account_id: str, user_id: str) -> Account:
    """Account owned by the caller, or any account for an admin"""
    account = system.accounts.get_account(account_id)
    if not account or (account.user_id != user_id and not system.profiles.is_admin(user_id)):
        raise NotFoundError("Account not found")
    return account


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        system: Banking system to serve; built from configuration when omitted

    Returns:
        Configured FastAPI app
    """
    if system is None:
        settings = get_config()
        setup_logging(settings.log_level, settings.log_format, settings.log_file)
        system = BankingSystem(settings=settings)

    app = FastAPI(
        title="Nova Banking API",
        description="Retail banking ledger: accounts, transfers, payments and request review",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.banking_system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BankingError)
    async def banking_error_handler(request: Request, exc: BankingError):
        code = status_code_for(exc)
        if code == status.HTTP_503_SERVICE_UNAVAILABLE:
            log_action(
                logger, "error", f"Storage failure: {exc}",
                action="http_request", resource=request.url.path
            )
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    # Service endpoints
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/")
    async def root():
        """Root endpoint with system information"""
        return {
            "system": "Nova Banking",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "users": "/users",
                "accounts": "/accounts",
                "transfers": "/transfers",
                "payments": "/payments",
                "account_requests": "/account-requests",
                "fund_requests": "/fund-requests",
                "notifications": "/notifications",
                "admin": "/admin"
            }
        }

    # User endpoints
    @app.post("/users/register", status_code=status.HTTP_201_CREATED)
    async def register_user(
        request: RegisterUserRequest,
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Register a user and open their starter account"""
        address = request.model_dump(exclude_none=True, exclude={"first_name", "last_name", "email"})
        profile, account = system.register_user(
            request.first_name, request.last_name, request.email, **address
        )
        return {
            "user_id": profile.id,
            "account_id": account.id,
            "message": "Registration successful! Welcome to Nova Banking."
        }

    @app.get("/users/me")
    async def get_me(
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Get the caller's profile"""
        profile = system.profiles.require_profile(user_id)
        return profile.to_dict()

    @app.patch("/users/me")
    async def update_me(
        request: UpdateProfileRequest,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Update the caller's name and address"""
        profile = system.profiles.update_profile(user_id, **request.model_dump(exclude_none=True))
        return {"profile": profile.to_dict(), "message": "Profile updated successfully"}

    @app.get("/users/me/accounts")
    async def get_my_accounts(
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Get the caller's accounts and total balance per currency"""
        accounts = system.accounts.get_user_accounts(user_id)
        return {
            "accounts": [account.to_dict() for account in accounts],
            "total_balance": {
                currency: str(total)
                for currency, total in system.accounts.total_balance(user_id).items()
            }
        }

    @app.get("/users/me/transactions")
    async def get_my_transactions(
        limit: Optional[int] = None,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Get transactions across all of the caller's accounts, newest first"""
        account_ids = [account.id for account in system.accounts.get_user_accounts(user_id)]
        transactions = system.transactions.get_user_transactions(account_ids, limit)
        return {"transactions": [t.to_dict() for t in transactions]}

    # Account endpoints
    @app.get("/accounts/{account_id}")
    async def get_account(
        account_id: str,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Get account details (owner or admin)"""
        return _visible_account(system, account_id, user_id).to_dict()

    @app.get("/accounts/{account_id}/transactions")
    async def get_account_transactions(
        account_id: str,
        limit: Optional[int] = None,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Get account transaction history, newest first"""
        account = _visible_account(system, account_id, user_id)
        transactions = system.transactions.get_account_transactions(account.id, limit)
        return {"transactions": [t.to_dict() for t in transactions]}

    # Money movement endpoints
    @app.post("/transfers", status_code=status.HTTP_201_CREATED)
    async def create_transfer(
        request: TransferRequest,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Transfer between one of the caller's accounts and any account"""
        transaction = system.ledger.transfer(
            request.from_account_id, request.to_account_id, request.amount,
            request.description, actor_id=user_id
        )
        return {"transaction": transaction.to_dict(), "message": "Transfer completed successfully"}

    @app.post("/payments", status_code=status.HTTP_201_CREATED)
    async def create_payment(
        request: PaymentRequest,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Pay a named recipient from one of the caller's accounts"""
        transaction = system.ledger.make_payment(
            request.from_account_id, request.recipient_name, request.amount,
            request.description, actor_id=user_id
        )
        return {"transaction": transaction.to_dict(), "message": "Payment processed successfully"}

    # Service request endpoints
    @app.post("/account-requests", status_code=status.HTTP_201_CREATED)
    async def submit_account_request(
        request: CreateAccountRequest,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Request a new account"""
        system.profiles.require_profile(user_id)
        account_request = system.requests.submit_account_request(
            user_id, request.account_type, request.name, request.initial_deposit
        )
        return {"request": account_request.to_dict(), "message": "Account request submitted successfully"}

    @app.get("/account-requests")
    async def list_my_account_requests(
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """List the caller's account requests"""
        return {"requests": [r.to_dict() for r in system.requests.list_account_requests(user_id=user_id)]}

    @app.post("/fund-requests", status_code=status.HTTP_201_CREATED)
    async def submit_fund_request(
        request: CreateFundRequest,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Request a deposit into one of the caller's accounts"""
        fund_request = system.requests.submit_fund_request(user_id, request.account_id, request.amount)
        return {"request": fund_request.to_dict(), "message": "Fund request submitted successfully"}

    @app.get("/fund-requests")
    async def list_my_fund_requests(
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """List the caller's fund requests"""
        return {"requests": [r.to_dict() for r in system.requests.list_fund_requests(user_id=user_id)]}

    # Notification endpoints
    @app.get("/notifications")
    async def get_notifications(
        unread_only: bool = False,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Get the caller's notifications, newest first"""
        notifications = system.notifications.get_user_notifications(user_id, unread_only=unread_only)
        return {
            "notifications": [n.to_dict() for n in notifications],
            "unread_count": system.notifications.unread_count(user_id)
        }

    @app.post("/notifications/read-all")
    async def mark_all_notifications_read(
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Mark every notification of the caller as read"""
        return {"updated": system.notifications.mark_all_as_read(user_id)}

    @app.post("/notifications/{notification_id}/read")
    async def mark_notification_read(
        notification_id: str,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Mark one of the caller's notifications as read"""
        return system.notifications.mark_as_read(notification_id, user_id).to_dict()

    # Admin endpoints
    @app.get("/admin/account-requests")
    async def admin_list_account_requests(
        status_filter: Optional[RequestStatus] = Query(None, alias="status"),
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """List account requests with requester details"""
        return {"requests": system.review.list_account_requests(user_id, status_filter)}

    @app.get("/admin/fund-requests")
    async def admin_list_fund_requests(
        status_filter: Optional[RequestStatus] = Query(None, alias="status"),
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """List fund requests with requester and account details"""
        return {"requests": system.review.list_fund_requests(user_id, status_filter)}

    @app.get("/admin/users")
    async def admin_list_users(
        search: Optional[str] = None,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """List users with account count and total balance, filtered by name or email"""
        return {"users": system.review.list_users(user_id, search)}

    @app.post("/admin/{kind}-requests/{request_id}/approve")
    async def admin_approve_request(
        kind: RequestKind,
        request_id: str,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Approve a pending request"""
        return system.review.approve(user_id, kind, request_id).to_dict()

    @app.post("/admin/{kind}-requests/{request_id}/reject")
    async def admin_reject_request(
        kind: RequestKind,
        request_id: str,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Reject a pending request"""
        return system.review.reject(user_id, kind, request_id).to_dict()

    @app.get("/admin/accounts/{account_id}/reconciliation")
    async def admin_reconcile_account(
        account_id: str,
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Check an account balance against its transaction history"""
        if not system.profiles.is_admin(user_id):
            raise PermissionDeniedError("You are not authorized to access this page")
        return system.ledger.reconcile_account(account_id).to_dict()

    @app.get("/admin/audit/integrity")
    async def admin_audit_integrity(
        user_id: str = Depends(get_current_user_id),
        system: BankingSystem = Depends(get_banking_system)
    ):
        """Verify the audit hash chain"""
        if not system.profiles.is_admin(user_id):
            raise PermissionDeniedError("You are not authorized to access this page")
        if not system.audit_trail:
            return {"valid": True, "total_events": 0, "enabled": False}
        return system.audit_trail.verify_integrity()

    return app


# Run server function
def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    settings = get_config()
    uvicorn.run(
        "nova_banking.api:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        log_level=settings.log_level.lower()
    )
