"""
core/models.py -- Domain dataclasses for the access-control kernel.

Pure data containers with zero logic. The rate limiter (core/ratelimit.py)
and the validator (core/validation.py) do the work; these only give the
values they pass around a shape.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass
class RateLimitEntry:
    """Attempt counter for one identifier (e.g. "login:203.0.113.7").

    window_start is rewritten only when a window is opened or re-opened.
    last_attempt moves on every attempt and drives the idle sweep.
    """

    identifier: str
    count: int
    window_start: float  # POSIX seconds
    last_attempt: float
    blocked: bool = False


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining_attempts: int
    reset_time: float  # POSIX seconds when the current window closes


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None


@dataclass
class Credentials:
    """Raw form input. Transient -- never stored, never logged."""

    email: str = ""
    password: str = ""
    name: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password='***', name={self.name!r})"


class PathClassification(str, Enum):
    PUBLIC = "public"
    STATIC = "static"
    PROTECTED = "protected"
