from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    SITE_OWNER = "SITE_OWNER"
    SITE_ADMIN = "SITE_ADMIN"
    DESIGNER = "DESIGNER"
    CUSTOMER = "CUSTOMER"


class CompanyRole(str, Enum):
    OWNER = "OWNER"
    PM = "PM"
    BILLING = "BILLING"
    MEMBER = "MEMBER"


SITE_ADMIN_ROLES = frozenset({UserRole.SITE_OWNER, UserRole.SITE_ADMIN})
COMPANY_ADMIN_ROLES = frozenset({CompanyRole.OWNER, CompanyRole.PM})
BILLING_ROLES = frozenset({CompanyRole.OWNER, CompanyRole.BILLING})
TICKET_WRITER_ROLES = frozenset({CompanyRole.OWNER, CompanyRole.PM, CompanyRole.MEMBER})

_ROLE_LABELS = {
    UserRole.SITE_OWNER: "Site owner",
    UserRole.SITE_ADMIN: "Site admin",
    UserRole.DESIGNER: "Creative",
    UserRole.CUSTOMER: "Customer",
}


def _user_role(role: UserRole | str | None) -> UserRole | None:
    if role is None:
        return None
    try:
        return UserRole(role)
    except ValueError:
        return None


def _company_role(role: CompanyRole | str | None) -> CompanyRole | None:
    if role is None:
        return None
    try:
        return CompanyRole(role)
    except ValueError:
        return None


def is_site_admin_role(role: UserRole | str | None) -> bool:
    return _user_role(role) in SITE_ADMIN_ROLES


def is_creative_role(role: UserRole | str | None) -> bool:
    return _user_role(role) == UserRole.DESIGNER


def is_customer_role(role: UserRole | str | None) -> bool:
    return _user_role(role) == UserRole.CUSTOMER


def format_role(role: UserRole | str | None) -> str:
    resolved = _user_role(role)
    if resolved is None:
        return str(role or "")
    return _ROLE_LABELS[resolved]


def normalize_company_role(value: object) -> CompanyRole | None:
    if isinstance(value, CompanyRole):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    return _company_role(value.strip().upper())


def is_company_admin_role(role: CompanyRole | str | None) -> bool:
    return _company_role(role) in COMPANY_ADMIN_ROLES


def can_manage_members(role: CompanyRole | str | None) -> bool:
    return is_company_admin_role(role)


def can_edit_company_profile(role: CompanyRole | str | None) -> bool:
    return is_company_admin_role(role)


def can_manage_projects(role: CompanyRole | str | None) -> bool:
    return is_company_admin_role(role)


def can_manage_plan(role: CompanyRole | str | None) -> bool:
    return _company_role(role) in BILLING_ROLES


def can_manage_billing(role: CompanyRole | str | None) -> bool:
    return _company_role(role) in BILLING_ROLES


def can_view_board(role: CompanyRole | str | None) -> bool:
    return _company_role(role) is not None


def can_create_tickets(role: CompanyRole | str | None) -> bool:
    return _company_role(role) in TICKET_WRITER_ROLES


def can_move_tickets_on_board(role: CompanyRole | str | None) -> bool:
    return can_create_tickets(role)


def can_edit_tickets(role: CompanyRole | str | None) -> bool:
    return can_create_tickets(role)


def can_view_tokens(role: CompanyRole | str | None) -> bool:
    return True


def is_billing_read_only(role: CompanyRole | str | None) -> bool:
    return _company_role(role) == CompanyRole.BILLING


def is_at_least_company_pm(role: CompanyRole | str | None) -> bool:
    return is_company_admin_role(role)


def can_mark_tickets_done_for_company(
    global_role: UserRole | str | None, company_role: CompanyRole | str | None
) -> bool:
    """Site admins can always close tickets; customers need OWNER or PM."""
    if is_site_admin_role(global_role):
        return True
    if not is_customer_role(global_role):
        return False
    return is_company_admin_role(company_role)
