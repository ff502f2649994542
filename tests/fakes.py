"""
tests/fakes.py -- In-memory stand-ins shared by the test modules.

Imported as a plain module (tests/ is on sys.path under pytest's default
rootdir handling), not through conftest, so each test module and conftest
see the same class objects.
"""

from __future__ import annotations

import itertools
import time
from typing import Any, Optional

from auth.errors import ProviderError, ProviderErrorKind
from auth.models import ProviderSession, ProviderUser, SignUpOutcome

STRONG_PASSWORD = "Sup3r$ecret"


# ---------------------------------------------------------------------------
# Fake identity provider
# ---------------------------------------------------------------------------


class FakeIdentityProvider:
    """In-memory IdentityProvider.

    fail_with maps a method name to an exception raised on every call of
    that method. delay (seconds) is slept inside get_user/get_session to
    simulate a slow provider.
    """

    def __init__(self, require_verification: bool = True) -> None:
        self.require_verification = require_verification
        self.fail_with: dict[str, Exception] = {}
        self.delay = 0.0
        self.calls: list[tuple[str, tuple]] = []
        self._accounts: dict[str, dict[str, Any]] = {}
        self._access: dict[str, ProviderUser] = {}
        self._refresh: dict[str, ProviderUser] = {}
        self._ids = itertools.count(1)

    # -- helpers used by tests ------------------------------------------

    def add_user(self, email: str, password: str = STRONG_PASSWORD, confirmed: bool = True) -> ProviderUser:
        user = ProviderUser(id=f"user-{next(self._ids)}", email=email, email_confirmed=confirmed)
        self._accounts[email] = {"password": password, "user": user}
        return user

    def issue_session(self, user: ProviderUser) -> ProviderSession:
        n = next(self._ids)
        session = ProviderSession(
            access_token=f"access-{n}",
            refresh_token=f"refresh-{n}",
            expires_in=3600,
            user=user,
        )
        self._access[session.access_token] = user
        self._refresh[session.refresh_token] = user
        return session

    def expire_access(self, access_token: str) -> None:
        self._access.pop(access_token, None)

    def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.fail_with:
            raise self.fail_with[name]

    # -- IdentityProvider -----------------------------------------------

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        self._enter("sign_in_with_password", email)
        account = self._accounts.get(email)
        if account is None or account["password"] != password:
            raise ProviderError(ProviderErrorKind.INVALID_CREDENTIALS, "Invalid login credentials", 400)
        if not account["user"].email_confirmed:
            raise ProviderError(ProviderErrorKind.EMAIL_UNVERIFIED, "Email not confirmed", 400)
        return self.issue_session(account["user"])

    def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> SignUpOutcome:
        self._enter("sign_up", email, metadata)
        if email in self._accounts:
            raise ProviderError(ProviderErrorKind.ALREADY_REGISTERED, "User already registered", 422)
        user = self.add_user(email, password, confirmed=not self.require_verification)
        if self.require_verification:
            return SignUpOutcome(user=user)
        session = self.issue_session(user)
        return SignUpOutcome(user=user, session=session)

    def sign_out(self, access_token: str) -> None:
        self._enter("sign_out", access_token)
        self._access.pop(access_token, None)

    def resend(self, type: str, email: str) -> None:
        self._enter("resend", type, email)

    def get_user(self, access_token: str) -> Optional[ProviderUser]:
        self._enter("get_user", access_token)
        if self.delay:
            time.sleep(self.delay)
        return self._access.get(access_token)

    def get_session(self, refresh_token: str) -> Optional[ProviderSession]:
        self._enter("get_session", refresh_token)
        if self.delay:
            time.sleep(self.delay)
        user = self._refresh.pop(refresh_token, None)
        if user is None:
            return None
        return self.issue_session(user)


