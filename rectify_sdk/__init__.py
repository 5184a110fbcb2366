"""
RECtify Python SDK

Client-side core for the RECtify I-REC trading platform: session and token
lifecycle, password recovery, role-based permission gating and dashboard
summary aggregation over the platform's REST API.
"""

from .client import IdentityServiceClient
from .session import SessionManager
from .recovery import PasswordRecoveryFlow, PasswordResetFlow, RecoveryStep, RecoveryStateError
from .dashboard import DashboardAggregator
from .credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .authorization import (
    DASHBOARD_TABS,
    DashboardTab,
    Permission,
    has_permission,
    permissions_for,
    require_permission,
    visible_tabs,
)
from .config import ClientSettings, get_settings, set_settings
from .models import (
    ApiResponse,
    DashboardSummary,
    HoldingsSummary,
    Order,
    Permissions,
    Preferences,
    Transaction,
    User,
    UserRole,
    UserStats,
    UserTier,
    VerificationStatus,
)
from .exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    CredentialStoreError,
    NetworkError,
    RateLimitError,
    RectifyError,
    RequestTimeoutError,
    ValidationError,
)

__version__ = "1.0.0"
__author__ = "RECtify Team"

__all__ = [
    "IdentityServiceClient",
    "SessionManager",
    "PasswordRecoveryFlow",
    "PasswordResetFlow",
    "RecoveryStep",
    "RecoveryStateError",
    "DashboardAggregator",
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "ClientSettings",
    "get_settings",
    "set_settings",
    # Authorization
    "DASHBOARD_TABS",
    "DashboardTab",
    "Permission",
    "has_permission",
    "permissions_for",
    "require_permission",
    "visible_tabs",
    # Exceptions
    "RectifyError",
    "AuthenticationError",
    "AuthorizationError",
    "CredentialStoreError",
    "RateLimitError",
    "RequestTimeoutError",
    "ValidationError",
    "APIError",
    "NetworkError",
    # Models
    "ApiResponse",
    "DashboardSummary",
    "HoldingsSummary",
    "Order",
    "Permissions",
    "Preferences",
    "Transaction",
    "User",
    "UserRole",
    "UserStats",
    "UserTier",
    "VerificationStatus",
]
