"""Three-letter project codes derived from project names.

"New York Times" -> "NYT", "Web Design" -> "WED", "Website" -> "WEB",
"AI" -> "AIX".
"""

import re
import string
from collections.abc import Iterable

from brandbite.domain.errors import DomainError

CODE_LENGTH = 3
ALPHABET = string.ascii_uppercase
MAX_CODE_ATTEMPTS = len(ALPHABET) ** 2 - 1
_NON_LETTERS = re.compile(r"[^a-zA-Z\s]")
_CODE_RE = re.compile(r"^[A-Z]{3}$")


def generate_abbreviation(name: str | None) -> str:
    words = _NON_LETTERS.sub("", name or "").split()
    if len(words) >= 3:
        abbreviation = "".join(word[0] for word in words[:3])
    elif len(words) == 2:
        abbreviation = words[0][:2] + words[1][0]
    elif len(words) == 1:
        abbreviation = words[0][:3]
    else:
        abbreviation = ""
    return abbreviation.upper().ljust(CODE_LENGTH, "X")[:CODE_LENGTH]


def is_valid_project_code(code: str | None) -> bool:
    return bool(code) and _CODE_RE.match(code) is not None


def generate_unique_project_code(name: str | None, existing_codes: Iterable[str | None]) -> str:
    taken = {code for code in existing_codes if code}
    base = generate_abbreviation(name)
    if base not in taken:
        return base
    second = ALPHABET.index(base[1])
    third = ALPHABET.index(base[2])
    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        candidate = (
            base[0]
            + ALPHABET[(second + attempt // len(ALPHABET)) % len(ALPHABET)]
            + ALPHABET[(third + attempt) % len(ALPHABET)]
        )
        if candidate not in taken:
            return candidate
    raise DomainError(detail="Could not generate a unique project code")
