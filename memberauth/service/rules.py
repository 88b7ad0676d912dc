"""Username and password composition rules.

Username:
  - 6 to 12 characters, lowercase letters and digits only
  - contains at least one letter and starts with one

Password:
  - 10 to 50 characters from ``A-Z a-z 0-9 !@#$%^&*-+=``
  - at least one digit, one lowercase, one uppercase letter and one symbol
  - no run of three ascending, descending or identical characters
    (case-insensitive)
  - no three consecutive characters of the username, forward or reversed
"""

from __future__ import annotations

import re

_USERNAME_RE = re.compile(r"^(?=.*[a-z])[a-z][a-z0-9]{5,11}$")
_PASSWORD_RE = re.compile(
    r"^(?=.*[0-9])(?=.*[a-z])(?=.*[A-Z])(?=.*[!@#$%^&*\-+=])[a-zA-Z0-9!@#$%^&*\-+=]{10,50}$"
)


def username_rule(username: str) -> bool:
    return isinstance(username, str) and bool(_USERNAME_RE.fullmatch(username))


def _has_run_of_three(text: str) -> bool:
    for a, b, c in zip(text, text[1:], text[2:]):
        first, second = ord(b) - ord(a), ord(c) - ord(b)
        if first == second and first in (-1, 0, 1):
            return True
    return False


def _shares_username_fragment(password: str, username: str) -> bool:
    for i in range(len(username) - 2):
        fragment = username[i : i + 3]
        if fragment in password or fragment[::-1] in password:
            return True
    return False


def password_rule(username: str, password: str) -> bool:
    if not isinstance(password, str) or not isinstance(username, str):
        return False
    if not _PASSWORD_RE.fullmatch(password):
        return False
    lowered = password.lower()
    if _has_run_of_three(lowered):
        return False
    return not _shares_username_fragment(lowered, username.lower())


__all__ = ["password_rule", "username_rule"]
