"""
core/validation.py -- Credential validation and input narrowing.

Pure, total functions: no state, no I/O, no exceptions for bad input. They
exist to reject obviously malformed input before a network round trip to the
identity provider is spent on it.

sanitize() is a narrowing transform, NOT an HTML-safety guarantee. It strips
"<" and ">" so naive markup cannot survive into stored display names, but it
does nothing about quotes, entities or attribute contexts. Anything rendered
later must still be escaped at output time by the template engine.
"""

import re

from core.models import ValidationResult

_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_MAX_EMAIL_LENGTH = 254  # RFC 5321 path limit

_MIN_PASSWORD_LENGTH = 8
# Upper bound keeps hashing cost on the provider side predictable.
_MAX_PASSWORD_LENGTH = 128
_PASSWORD_SYMBOLS = frozenset("!@#$%^&*()_+-=[]{};':\"\\|,.<>/?")

_MIN_NAME_LENGTH = 2
_MAX_NAME_LENGTH = 50
_NAME_RE = re.compile(r"[A-Za-z\s'-]+")


def validate_email(email: str) -> bool:
    """Return True if email looks like local@domain.tld and fits in 254 chars."""
    return len(email) <= _MAX_EMAIL_LENGTH and _EMAIL_RE.fullmatch(email) is not None


def validate_password(password: str) -> ValidationResult:
    """Check password strength. Returns the FIRST violated rule only.

    Rule order is part of the contract -- users see one corrective message at
    a time, always the same one for the same input:
      length < 8, length > 128, lowercase, uppercase, digit, symbol.
    """
    if len(password) < _MIN_PASSWORD_LENGTH:
        return ValidationResult(False, "Password must be at least 8 characters long")
    if len(password) > _MAX_PASSWORD_LENGTH:
        return ValidationResult(False, "Password must be less than 128 characters")
    if not any("a" <= c <= "z" for c in password):
        return ValidationResult(False, "Password must contain at least one lowercase letter")
    if not any("A" <= c <= "Z" for c in password):
        return ValidationResult(False, "Password must contain at least one uppercase letter")
    if not any("0" <= c <= "9" for c in password):
        return ValidationResult(False, "Password must contain at least one number")
    if not any(c in _PASSWORD_SYMBOLS for c in password):
        return ValidationResult(False, "Password must contain at least one special character")
    return ValidationResult(True)


def validate_name(name: str) -> ValidationResult:
    """Display names: 2-50 chars of letters, spaces, hyphens and apostrophes."""
    if len(name) < _MIN_NAME_LENGTH:
        return ValidationResult(False, "Name must be at least 2 characters long")
    if len(name) > _MAX_NAME_LENGTH:
        return ValidationResult(False, "Name must be less than 50 characters long")
    if not _NAME_RE.fullmatch(name):
        return ValidationResult(False, "Name can only contain letters, spaces, hyphens, and apostrophes")
    return ValidationResult(True)


def sanitize(value: str) -> str:
    """Trim surrounding whitespace, then drop every '<' and '>'.

    sanitize("  <script>  ") == "script". Inner text is preserved; this is
    not escaping (see module docstring).
    """
    return value.strip().replace("<", "").replace(">", "")
