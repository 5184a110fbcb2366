"""
Data models for the RECtify client SDK

Wire payloads use camelCase keys; the models expose snake_case attributes and
accept either form on input.
"""

from typing import Annotated, Dict, List, Optional, Any
from datetime import datetime
from enum import Enum
from pydantic import (
    AliasChoices, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator
)
from pydantic.alias_generators import to_camel


EMIRATES = (
    "Abu Dhabi",
    "Dubai",
    "Sharjah",
    "Ajman",
    "Fujairah",
    "Ras Al Khaimah",
    "Umm Al Quwain",
)


class UserRole(str, Enum):
    """Platform roles"""
    TRADER = "trader"
    FACILITY_OWNER = "facility-owner"
    COMPLIANCE_OFFICER = "compliance-officer"
    ADMIN = "admin"


class UserTier(str, Enum):
    """Subscription tiers"""
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class VerificationStatus(str, Enum):
    """KYC verification states"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Currency(str, Enum):
    AED = "AED"
    USD = "USD"


class Language(str, Enum):
    EN = "en"
    AR = "ar"


class DashboardLayout(str, Enum):
    DEFAULT = "default"
    COMPACT = "compact"
    DETAILED = "detailed"


class WireModel(BaseModel):
    """Base model mapping snake_case attributes to camelCase wire keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, **kwargs) -> Dict[str, Any]:
        """Serialize with wire (camelCase) keys"""
        return self.model_dump(by_alias=True, mode="json", **kwargs)


def normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


NormalizedEmail = Annotated[str, BeforeValidator(normalize_email)]


class Preferences(WireModel):
    """Display preferences; free-form, no cross-field rules"""
    currency: Currency = Currency.AED
    language: Language = Language.EN
    notifications: bool = True
    dark_mode: bool = False
    dashboard_layout: DashboardLayout = DashboardLayout.DEFAULT


class Permissions(WireModel):
    """The five capability flags"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    can_trade: bool = False
    can_register_facilities: bool = False
    can_view_analytics: bool = False
    can_export_reports: bool = False
    can_manage_users: bool = False


class User(WireModel):
    """Authenticated account as reported by the identity service"""
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    email: NormalizedEmail
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    emirate: str = ""
    role: UserRole
    tier: UserTier = UserTier.BASIC
    verification_status: VerificationStatus = VerificationStatus.PENDING
    preferences: Preferences = Field(default_factory=Preferences)
    # Server-asserted; gating uses the role-derived set in authorization.py
    permissions: Permissions = Field(default_factory=Permissions)
    joined_date: Optional[str] = None
    last_login: Optional[str] = None
    profile_image: Optional[str] = None
    portfolio_value: Optional[float] = None
    total_recs: Optional[float] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ApiResponse(WireModel):
    """Envelope returned by every identity service endpoint"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    success: bool = False
    message: Optional[str] = None
    token: Optional[str] = None
    user: Optional[User] = None
    data: Optional[Any] = None
    errors: Optional[List[Any]] = None


class HoldingsSummary(WireModel):
    """Aggregate over the account's REC holdings"""
    total_value: float = 0.0
    total_quantity: float = 0.0
    unique_facilities: List[str] = Field(default_factory=list)
    energy_types: List[str] = Field(default_factory=list)


class Order(WireModel):
    """Open or historical order; unknown fields are kept"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "_id"))
    status: str
    order_type: Optional[str] = None
    quantity: Optional[float] = None
    energy_type: Optional[str] = None


class Transaction(WireModel):
    """Settled or pending trade"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "_id"))
    quantity: float = 0.0
    status: Optional[str] = None
    completed_at: Optional[datetime] = None
    total_amount: Optional[float] = None
    energy_type: Optional[str] = None


class UserStats(WireModel):
    """Admin user statistics"""
    total_users: int = 0
    active_users: int = 0
    verified_users: int = 0
    pending_users: int = 0
    role_distribution: List[Dict[str, Any]] = Field(default_factory=list)
    tier_distribution: List[Dict[str, Any]] = Field(default_factory=list)


class DashboardSummary(WireModel):
    """Derived dashboard metrics; recomputed on refresh, never persisted"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    total_value: float = 0.0
    total_quantity: float = 0.0
    unique_facility_count: int = 0
    energy_type_count: int = 0
    active_order_count: int = 0
    monthly_trading_quantity: float = 0.0
    updated_at: Optional[datetime] = None


class SignupRequest(WireModel):
    """Registration payload, validated before any remote call"""
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    email: Annotated[EmailStr, BeforeValidator(normalize_email)]
    password: str = Field(min_length=1)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    company: str = Field(min_length=1)
    emirate: str
    role: UserRole = UserRole.TRADER

    @field_validator("emirate")
    @classmethod
    def known_emirate(cls, value: str) -> str:
        if value not in EMIRATES:
            raise ValueError(f"Invalid emirate: {value}")
        return value


class PreferencesUpdate(WireModel):
    currency: Optional[Currency] = None
    language: Optional[Language] = None
    notifications: Optional[bool] = None
    dark_mode: Optional[bool] = None
    dashboard_layout: Optional[DashboardLayout] = None


class ProfileUpdate(WireModel):
    """Fields a user may change on their own profile.

    Anything else in client input (role, tier, permissions, ...) is dropped.
    """
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore",
        str_strip_whitespace=True
    )

    first_name: Optional[str] = Field(default=None, min_length=1)
    last_name: Optional[str] = Field(default=None, min_length=1)
    company: Optional[str] = Field(default=None, min_length=1)
    emirate: Optional[str] = None
    profile_image: Optional[str] = None
    preferences: Optional[PreferencesUpdate] = None

    @field_validator("emirate")
    @classmethod
    def known_emirate(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in EMIRATES:
            raise ValueError(f"Invalid emirate: {value}")
        return value
