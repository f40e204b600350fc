"""Reconnect policy: pure decisions over connection updates.

Kept apart from the connection state machine so the policy can be tuned and
tested without touching transition logic.
"""

from dataclasses import dataclass
from typing import Any

LOGGED_OUT = "logged-out"
QR_ATTEMPTS_ENDED = "QR refs attempts ended"

# Engine status code for a session revoked from the phone
LOGGED_OUT_STATUS_CODE = 401

MAX_RECONNECT_ATTEMPTS = 10


@dataclass(frozen=True)
class ReconnectDecision:
    should_reconnect: bool
    is_transient_phase: bool = False

    @property
    def terminal(self) -> bool:
        return not self.should_reconnect


def disconnect_reason(last_disconnect: Any) -> tuple[str | None, str | None]:
    """Extract ``(cause, message)`` from a ``lastDisconnect`` entry.

    Accepts either an explicit ``cause`` or the engine's ``statusCode``, at the
    top level or nested under ``error``.
    """
    if not isinstance(last_disconnect, dict):
        return None, None

    error = last_disconnect.get("error")
    sources = [last_disconnect, error] if isinstance(error, dict) else [last_disconnect]

    cause = None
    message = None
    for source in sources:
        if cause is None:
            if source.get("cause") is not None:
                cause = str(source["cause"])
            elif source.get("statusCode") == LOGGED_OUT_STATUS_CODE:
                cause = LOGGED_OUT
            elif source.get("statusCode") is not None:
                cause = str(source["statusCode"])
        if message is None and source.get("message") is not None:
            message = str(source["message"])
    return cause, message


def decide(cause: str | None, message: str | None) -> ReconnectDecision:
    """Terminal iff the account logged out or QR pairing ran out of attempts."""
    terminal = cause == LOGGED_OUT or message == QR_ATTEMPTS_ENDED
    return ReconnectDecision(should_reconnect=not terminal)


def is_reconnecting_phase(update: dict[str, Any], is_reconnect: bool = False) -> bool:
    """True when an update marks a transient reconnect, not a real disconnect.

    - ``isNewLogin``: the QR was just read and the engine restarts the session.
    - ``connecting`` with a ``qr`` key but no value: right after a new login.
    - ``connecting`` while resuming a stored session at process start.
    """
    if update.get("isNewLogin"):
        return True
    if update.get("connection") != "connecting":
        return False
    return ("qr" in update and not update["qr"]) or is_reconnect


def classify(update: dict[str, Any], is_reconnect: bool = False) -> ReconnectDecision:
    """Decision for one connection update, transient phase taking precedence."""
    if is_reconnecting_phase(update, is_reconnect):
        return ReconnectDecision(should_reconnect=True, is_transient_phase=True)
    if update.get("connection") == "close":
        return decide(*disconnect_reason(update.get("lastDisconnect")))
    return ReconnectDecision(should_reconnect=True)


def attempts_exhausted(count: int) -> bool:
    return count > MAX_RECONNECT_ATTEMPTS
