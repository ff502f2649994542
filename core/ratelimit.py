"""
core/ratelimit.py -- In-memory attempt limiter keyed by caller identity.

Pattern: injectable service object. One RateLimiter owns one mapping of
identifier -> RateLimitEntry. api/main.py creates the process-wide instance in
lifespan and hands it to the orchestrator; tests build their own instances
with a fake clock so no state leaks between test cases.

Window semantics:
  A window opens on the first attempt for an identifier (window_start = now).
  Attempts inside the window increment count without moving window_start.
  Once now - window_start exceeds the window, the next attempt opens a fresh
  window with count = 1. The reset time reported to callers is always
  window_start + window.

Concurrency:
  A single threading.Lock guards the mapping. check(), clear() and sweep()
  each hold it for their whole read-modify-write, so two concurrent attempts
  can never both read the same count (no lost updates) and the sweep never
  deletes an entry out from under a check in progress.

Memory:
  A daemon thread calls sweep() every sweep_interval seconds and drops any
  entry idle for longer than retention. It is started on construction and
  stopped by close(), so tests and shutdown tear it down deterministically.

Not persisted: state is lost on restart and is not shared between worker
processes. A multi-worker deployment needs a shared store (e.g. Redis) in
front of this interface.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Optional

from core.models import RateLimitDecision, RateLimitEntry

logger = logging.getLogger("pollgate.ratelimit")

_DEFAULT_SWEEP_INTERVAL = 5 * 60  # seconds
_DEFAULT_RETENTION = 60 * 60  # seconds

UNKNOWN_CLIENT = "unknown"


class RateLimiter:
    """Per-identifier attempt counter with a rolling window.

    Usage:
        limiter = RateLimiter()
        decision = limiter.check("login:203.0.113.7", max_attempts=5, window=900)
        if not decision.allowed:
            ...
        limiter.clear("login:203.0.113.7")   # after a legitimate success
        limiter.close()
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = _DEFAULT_SWEEP_INTERVAL,
        retention: float = _DEFAULT_RETENTION,
        start_sweeper: bool = True,
    ) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._retention = retention
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if start_sweeper:
            self.start()

    # ------------------------------------------------------------------
    # Limiting
    # ------------------------------------------------------------------

    def check(self, identifier: str, max_attempts: int, window: float) -> RateLimitDecision:
        """Record one attempt for identifier and decide whether it is allowed.

        The (max_attempts + 1)-th attempt inside one window is the first one
        denied. Denied attempts still count, so hammering a blocked
        identifier does not shorten the wait.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(identifier)

            if entry is None or now - entry.window_start > window:
                self._entries[identifier] = RateLimitEntry(
                    identifier=identifier,
                    count=1,
                    window_start=now,
                    last_attempt=now,
                )
                return RateLimitDecision(
                    allowed=True,
                    remaining_attempts=max_attempts - 1,
                    reset_time=now + window,
                )

            entry.count += 1
            entry.last_attempt = now
            reset_time = entry.window_start + window

            if entry.count > max_attempts:
                if not entry.blocked:
                    logger.warning("Rate limit exceeded for %s (%d attempts)", identifier, entry.count)
                entry.blocked = True
                return RateLimitDecision(allowed=False, remaining_attempts=0, reset_time=reset_time)

            return RateLimitDecision(
                allowed=True,
                remaining_attempts=max_attempts - entry.count,
                reset_time=reset_time,
            )

    def clear(self, identifier: str) -> None:
        """Forget identifier entirely. The next check() starts a fresh window."""
        with self._lock:
            self._entries.pop(identifier, None)

    def get_entry(self, identifier: str) -> Optional[RateLimitEntry]:
        """Return a snapshot copy of the entry for identifier, or None."""
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None:
                return None
            return RateLimitEntry(
                identifier=entry.identifier,
                count=entry.count,
                window_start=entry.window_start,
                last_attempt=entry.last_attempt,
                blocked=entry.blocked,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Delete entries idle for longer than retention. Returns number removed."""
        cutoff = self._clock() - self._retention
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.last_attempt < cutoff]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Swept %d idle rate-limit entries", len(stale))
        return len(stale)

    def _sweep_loop(self) -> None:
        # Event.wait doubles as an interruptible sleep: close() sets the event
        # and the loop exits without waiting out the rest of the interval.
        while not self._stop.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Rate-limit sweep failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background sweeper thread. No-op if already running."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="ratelimit-sweeper", daemon=True)
        self._sweeper.start()

    def close(self) -> None:
        """Stop the sweeper and wait for it to exit. Safe to call twice."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def __enter__(self) -> "RateLimiter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Client identity
# ---------------------------------------------------------------------------

_unknown_warned = False


def derive_client_identifier(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """Return the best available client address for rate-limit keys.

    Priority:
      1. First address in X-Forwarded-For (the original client as seen by the
         first proxy).
      2. X-Real-IP.
      3. peer -- the socket peer address, only when the caller passes one
         (Settings.trust_peer_address).
      4. The literal "unknown".

    Hardening note: every caller that lands in "unknown" shares ONE bucket,
    so a deployment that strips proxy headers silently turns the limiter into
    a single global counter for those callers. This logs a warning the first
    time it happens so the misconfiguration is visible.

    X-Forwarded-For is client-controlled unless a trusted proxy overwrites it;
    deploy behind one that does.

    headers must be case-insensitive (Starlette Headers) or use lowercase keys.
    """
    global _unknown_warned

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if peer:
        return peer

    if not _unknown_warned:
        _unknown_warned = True
        logger.warning(
            "Client address could not be determined (no X-Forwarded-For / X-Real-IP); "
            "such callers share the '%s' rate-limit bucket. Check proxy configuration.",
            UNKNOWN_CLIENT,
        )
    return UNKNOWN_CLIENT
