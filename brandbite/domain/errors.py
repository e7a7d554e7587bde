from dataclasses import dataclass
from typing import List

PROBLEM_TYPE_DOMAIN = "https://brandbite.app/problems/domain-error"
PROBLEM_TYPE_NOT_FOUND = "https://brandbite.app/problems/not-found"
PROBLEM_TYPE_FORBIDDEN = "https://brandbite.app/problems/forbidden"
PROBLEM_TYPE_CONFLICT = "https://brandbite.app/problems/conflict"
PROBLEM_TYPE_INSUFFICIENT_TOKENS = "https://brandbite.app/problems/insufficient-tokens"


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = PROBLEM_TYPE_DOMAIN
    errors: List[dict] | None = None

    status_code = 400


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    type: str = PROBLEM_TYPE_NOT_FOUND

    status_code = 404


@dataclass
class ForbiddenError(DomainError):
    title: str = "Forbidden"
    type: str = PROBLEM_TYPE_FORBIDDEN

    status_code = 403


@dataclass
class ConflictError(DomainError):
    title: str = "Conflict"
    type: str = PROBLEM_TYPE_CONFLICT

    status_code = 409


@dataclass
class InsufficientTokensError(DomainError):
    title: str = "Insufficient Tokens"
    type: str = PROBLEM_TYPE_INSUFFICIENT_TOKENS

    status_code = 400
