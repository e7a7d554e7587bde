import pytest

from brandbite.domain import roles
from brandbite.domain.companies.abbreviation import (
    generate_abbreviation,
    generate_unique_project_code,
    is_valid_project_code,
)
from brandbite.domain.roles import CompanyRole, UserRole
from brandbite.domain.tickets.codes import build_ticket_code


def test_site_roles():
    assert roles.is_site_admin_role(UserRole.SITE_OWNER)
    assert roles.is_site_admin_role("SITE_ADMIN")
    assert not roles.is_site_admin_role(UserRole.DESIGNER)
    assert roles.is_creative_role("DESIGNER")
    assert roles.is_customer_role(UserRole.CUSTOMER)
    assert not roles.is_customer_role("nobody")
    assert roles.format_role(UserRole.DESIGNER) == "Creative"
    assert roles.format_role("UNKNOWN") == "UNKNOWN"


def test_company_role_permissions():
    assert roles.normalize_company_role(" pm ") == CompanyRole.PM
    assert roles.normalize_company_role("boss") is None
    assert roles.normalize_company_role(None) is None

    assert roles.can_manage_members(CompanyRole.OWNER)
    assert roles.can_manage_projects("PM")
    assert not roles.can_manage_members(CompanyRole.BILLING)
    assert roles.can_manage_billing(CompanyRole.BILLING)
    assert not roles.can_manage_plan(CompanyRole.PM)
    assert roles.can_create_tickets(CompanyRole.MEMBER)
    assert not roles.can_create_tickets(CompanyRole.BILLING)
    assert roles.is_billing_read_only("BILLING")
    assert roles.can_view_board(CompanyRole.BILLING)
    assert not roles.can_view_board(None)


def test_mark_done_permissions():
    assert roles.can_mark_tickets_done_for_company(UserRole.SITE_ADMIN, None)
    assert roles.can_mark_tickets_done_for_company(UserRole.CUSTOMER, CompanyRole.OWNER)
    assert roles.can_mark_tickets_done_for_company(UserRole.CUSTOMER, CompanyRole.PM)
    assert not roles.can_mark_tickets_done_for_company(UserRole.CUSTOMER, CompanyRole.MEMBER)
    assert not roles.can_mark_tickets_done_for_company(UserRole.DESIGNER, CompanyRole.OWNER)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("New York Times", "NYT"),
        ("Web Design", "WED"),
        ("Website", "WEB"),
        ("AI", "AIX"),
        ("", "XXX"),
        ("R&D 2024 Lab", "RDL"),
    ],
)
def test_generate_abbreviation(name, expected):
    assert generate_abbreviation(name) == expected


def test_unique_project_code():
    assert generate_unique_project_code("Website", []) == "WEB"
    assert generate_unique_project_code("Website", ["WEB"]) == "WEC"
    assert generate_unique_project_code("Website", ["WEB", "WEC", None]) == "WED"
    assert is_valid_project_code("ABC")
    assert not is_valid_project_code("abc")
    assert not is_valid_project_code("AB")
    assert not is_valid_project_code(None)


def test_build_ticket_code():
    assert build_ticket_code("WEB", 101, "t1") == "WEB-101"
    assert build_ticket_code(None, 102, "t1") == "#102"
    assert build_ticket_code("WEB", None, "t1") == "t1"
