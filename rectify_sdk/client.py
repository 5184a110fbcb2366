"""
HTTP client for the RECtify identity and account API
"""

import logging
from typing import Dict, List, Optional, Any, Type, TypeVar
import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .credentials import CredentialStore, MemoryCredentialStore
from .models import (
    ApiResponse,
    HoldingsSummary,
    Order,
    ProfileUpdate,
    SignupRequest,
    Transaction,
    UserStats,
)
from .exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Statuses on which the server reports a handled failure in the usual envelope
_ENVELOPE_FAILURE_STATUSES = (400, 404, 409)

# Largest page the transactions endpoint serves
TRANSACTIONS_PAGE_LIMIT = 100


class IdentityServiceClient:
    """Async client for the identity service and account-data endpoints.

    Every call returns the parsed response or raises a ``RectifyError``
    subclass; it never swallows failures. The bearer token is read from the
    credential store on each request, so a token stored by the session layer
    is picked up immediately.
    """

    def __init__(self, base_url: str, credential_store: Optional[CredentialStore] = None,
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.credentials = credential_store or MemoryCredentialStore()
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry"""
        await self._ensure_http_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def _ensure_http_client(self):
        """Ensure HTTP client is initialized"""
        if not self._http_client:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def close(self):
        """Close all connections"""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _make_request(self, method: str, endpoint: str,
                            json_data: Optional[Dict] = None,
                            params: Optional[Dict] = None,
                            require_auth: bool = True) -> ApiResponse:
        """Make HTTP request to API"""
        await self._ensure_http_client()

        url = f"{self.base_url}{endpoint}"
        headers = {}

        if require_auth:
            token = self.credentials.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http_client.request(
                method=method,
                url=url,
                json=json_data,
                params=params,
                headers=headers
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request to {endpoint} timed out: {e}")
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: {e}")

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        status = response.status_code
        error_data = body if isinstance(body, dict) else {}
        server_message = error_data.get("message")

        if status == 401:
            raise AuthenticationError(
                server_message or "Authentication required or token expired",
                status_code=status,
                response_data=error_data
            )
        elif status == 403:
            raise AuthorizationError(
                server_message or "Insufficient permissions",
                status_code=status,
                response_data=error_data
            )
        elif status == 422:
            raise ValidationError(
                server_message or "Request validation failed",
                validation_errors=error_data.get("errors") or error_data.get("detail", []),
                status_code=status,
                response_data=error_data
            )
        elif status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                status_code=status
            )

        if body is None or not isinstance(body, dict):
            raise APIError(
                f"Unexpected response from {endpoint}: {status}",
                status_code=status
            )

        if response.is_success or (status in _ENVELOPE_FAILURE_STATUSES and "success" in body):
            return self._parse(ApiResponse, body, endpoint)

        raise APIError(
            server_message or f"API request failed: {status}",
            status_code=status,
            response_data=error_data
        )

    @staticmethod
    def _parse(model: Type[ModelT], payload: Any, endpoint: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            raise APIError(f"Malformed response from {endpoint}: {e.error_count()} invalid field(s)")

    @staticmethod
    def _require_success(response: ApiResponse, default_message: str) -> ApiResponse:
        if not response.success:
            raise APIError(response.message or default_message, response_data=response.to_wire())
        return response

    # Authentication methods
    async def login(self, email: str, password: str) -> ApiResponse:
        """Exchange credentials for a session token and user record"""
        return await self._make_request(
            "POST",
            "/auth/login",
            json_data={"email": email, "password": password},
            require_auth=False
        )

    async def register(self, request: SignupRequest) -> ApiResponse:
        """Create an account; a successful response carries a token and user"""
        return await self._make_request(
            "POST",
            "/auth/register",
            json_data=request.to_wire(),
            require_auth=False
        )

    async def logout(self) -> ApiResponse:
        return await self._make_request("POST", "/auth/logout")

    async def get_current_user(self) -> ApiResponse:
        return await self._make_request("GET", "/auth/me")

    async def update_profile(self, update: ProfileUpdate) -> ApiResponse:
        return await self._make_request(
            "PUT",
            "/auth/profile",
            json_data=update.to_wire(exclude_unset=True)
        )

    # Password recovery methods
    async def forgot_password(self, email: str) -> ApiResponse:
        """Ask the server to email a reset code"""
        return await self._make_request(
            "POST",
            "/auth/forgot-password",
            json_data={"email": email},
            require_auth=False
        )

    async def verify_reset_code(self, email: str, code: str) -> ApiResponse:
        return await self._make_request(
            "POST",
            "/auth/verify-reset-code",
            json_data={"email": email, "code": code},
            require_auth=False
        )

    async def reset_password(self, email: str, code: str, new_password: str) -> ApiResponse:
        return await self._make_request(
            "POST",
            "/auth/reset-password",
            json_data={"email": email, "code": code, "newPassword": new_password},
            require_auth=False
        )

    # Account data methods
    async def get_user_holdings(self) -> HoldingsSummary:
        """Get the aggregate over the user's REC holdings"""
        response = self._require_success(
            await self._make_request("GET", "/holdings"),
            "Failed to fetch holdings"
        )
        data = response.data if isinstance(response.data, dict) else {}
        return self._parse(HoldingsSummary, data.get("summary") or {}, "/holdings")

    async def get_user_orders(self, status: Optional[str] = None,
                              limit: Optional[int] = None) -> List[Order]:
        """Get the user's orders"""
        params = {}
        if status:
            params["status"] = status
        if limit:
            params["limit"] = limit

        response = self._require_success(
            await self._make_request("GET", "/orders", params=params or None),
            "Failed to fetch orders"
        )
        return [self._parse(Order, order, "/orders") for order in response.data or []]

    async def get_user_transactions(self, lookback_days: int = 30,
                                    status: Optional[str] = "completed",
                                    limit: int = TRANSACTIONS_PAGE_LIMIT) -> List[Transaction]:
        """Get the user's most recent transactions within a lookback window.

        The server returns at most ``limit`` rows (newest first, capped at
        100), so totals over a busy window can be incomplete.
        """
        params: Dict[str, Any] = {"days": lookback_days, "limit": limit}
        if status:
            params["status"] = status

        response = self._require_success(
            await self._make_request("GET", "/transactions", params=params),
            "Failed to fetch transactions"
        )
        return [
            self._parse(Transaction, transaction, "/transactions")
            for transaction in response.data or []
        ]

    async def get_user_stats(self) -> UserStats:
        """Get platform user statistics (user managers only)"""
        response = self._require_success(
            await self._make_request("GET", "/users/stats"),
            "Failed to fetch user statistics"
        )
        extra = response.model_extra or {}
        payload = dict(extra.get("stats") or {})
        payload["roleDistribution"] = extra.get("roleDistribution") or []
        payload["tierDistribution"] = extra.get("tierDistribution") or []
        return self._parse(UserStats, payload, "/users/stats")

    async def health_check(self) -> ApiResponse:
        """Perform health check"""
        return await self._make_request("GET", "/health", require_auth=False)
