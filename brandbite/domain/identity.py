from dataclasses import dataclass

from brandbite.domain.roles import CompanyRole, UserRole


@dataclass
class Identity:
    """Authenticated caller together with the active company context."""

    user_id: str
    role: UserRole
    email: str
    name: str | None = None
    company_id: str | None = None
    company_role: CompanyRole | None = None
