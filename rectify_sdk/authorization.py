"""
Role-based capability flags and dashboard tab gating

Permissions are derived from the role alone. The identity service also sends a
permission set with each user; it is kept on the ``User`` record but every
gating decision here re-derives from the role.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .exceptions import AuthorizationError
from .models import Permissions, User, UserRole


class Permission(str, Enum):
    """Names of the five capability flags, matching ``Permissions`` fields"""
    TRADE = "can_trade"
    REGISTER_FACILITIES = "can_register_facilities"
    VIEW_ANALYTICS = "can_view_analytics"
    EXPORT_REPORTS = "can_export_reports"
    MANAGE_USERS = "can_manage_users"


_ROLE_PERMISSIONS: Dict[UserRole, Permissions] = {
    UserRole.TRADER: Permissions(
        can_trade=True,
        can_register_facilities=False,
        can_view_analytics=True,
        can_export_reports=True,
        can_manage_users=False,
    ),
    UserRole.FACILITY_OWNER: Permissions(
        can_trade=True,
        can_register_facilities=True,
        can_view_analytics=True,
        can_export_reports=True,
        can_manage_users=False,
    ),
    UserRole.COMPLIANCE_OFFICER: Permissions(
        can_trade=False,
        can_register_facilities=False,
        can_view_analytics=True,
        can_export_reports=True,
        can_manage_users=True,
    ),
    UserRole.ADMIN: Permissions(
        can_trade=True,
        can_register_facilities=True,
        can_view_analytics=True,
        can_export_reports=True,
        can_manage_users=True,
    ),
}


def permissions_for(role: Union[UserRole, str]) -> Permissions:
    """Return the permission set for a role.

    Raises ValueError for a role string outside ``UserRole``.
    """
    return _ROLE_PERMISSIONS[UserRole(role)]


def has_permission(user: Optional[User], permission: Permission) -> bool:
    if user is None:
        return False
    return getattr(permissions_for(user.role), permission.value)


def require_permission(user: Optional[User], permission: Permission) -> None:
    """Raise AuthorizationError unless the user's role grants the permission"""
    if user is None:
        raise AuthorizationError("Not authenticated")
    if not has_permission(user, permission):
        raise AuthorizationError(
            f"Role '{user.role.value}' does not grant {permission.value}"
        )


def permission_mismatches(user: User) -> List[Permission]:
    """Flags where the server-asserted set disagrees with the role-derived one"""
    derived = permissions_for(user.role)
    return [
        permission for permission in Permission
        if getattr(user.permissions, permission.value) != getattr(derived, permission.value)
    ]


@dataclass(frozen=True)
class DashboardTab:
    value: str
    label: str
    requires: Optional[Permission] = None
    admin_only: bool = False


DASHBOARD_TABS: Tuple[DashboardTab, ...] = (
    DashboardTab("overview", "Overview"),
    DashboardTab("trading", "Trading", requires=Permission.TRADE),
    DashboardTab("portfolio", "Portfolio"),
    DashboardTab("market", "Market Data"),
    DashboardTab("ei-reports", "EI Reports"),
    DashboardTab("rec-registration", "REC Registration"),
    DashboardTab("admin", "Admin", admin_only=True),
)


def is_tab_visible(tab: DashboardTab, user: Optional[User]) -> bool:
    # The admin tab follows the role, not the permission matrix
    if tab.admin_only:
        return user is not None and user.role == UserRole.ADMIN
    if tab.requires is None:
        return True
    return has_permission(user, tab.requires)


def visible_tabs(user: Optional[User],
                 tabs: Tuple[DashboardTab, ...] = DASHBOARD_TABS) -> List[DashboardTab]:
    """Tabs the user may see, in display order.

    With no user only ungated tabs are returned; trading and admin stay
    hidden until a session exists.
    """
    return [tab for tab in tabs if is_tab_visible(tab, user)]
