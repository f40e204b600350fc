"""Contracts for the external session engine and auth-state storage.

The session engine owns handshake, encryption and framing for one account.
This package only consumes its event stream and issues commands through a
``SessionHandle``.
"""

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Protocol

from wabridge.errors import NotConnectedError


class SessionEventKind(str, Enum):
    CONNECTION_STATE = "connection-state"
    CREDENTIALS_UPDATE = "credentials-update"
    MESSAGES_RECEIVED = "messages-received"
    MESSAGES_CHANGED = "messages-changed"
    RECEIPT_CHANGED = "receipt-changed"
    HISTORY_SNAPSHOT = "history-snapshot"


# Event names as they appear in webhook bodies
WEBHOOK_EVENT_NAMES: dict[SessionEventKind, str] = {
    SessionEventKind.CONNECTION_STATE: "connection.update",
    SessionEventKind.MESSAGES_RECEIVED: "messages.upsert",
    SessionEventKind.MESSAGES_CHANGED: "messages.update",
    SessionEventKind.RECEIPT_CHANGED: "message-receipt.update",
    SessionEventKind.HISTORY_SNAPSHOT: "messaging-history.set",
}


@dataclass(frozen=True)
class SessionEvent:
    """One event emitted by the session engine.

    ``data`` for CONNECTION_STATE carries ``connection`` (phase), and
    optionally ``qr``, ``lastDisconnect``, ``isNewLogin`` and ``isOnline``.
    """

    kind: SessionEventKind
    data: Any


@dataclass
class WebhookEvent:
    event: str
    data: Any
    extra: dict[str, Any] | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"event": self.event, "data": self.data}
        if self.extra:
            body["extra"] = self.extra
        return body


@dataclass(frozen=True)
class ConnectionOptions:
    webhook_url: str
    webhook_verify_token: str
    client_name: str = "Chrome"
    include_media: bool = True
    sync_full_history: bool = False
    # Set when resuming a stored session at process start
    is_reconnect: bool = False

    def stored(self) -> "ConnectionOptions":
        """Options as persisted next to the credentials."""
        return replace(self, is_reconnect=False)


@dataclass
class AuthState:
    """Credentials loaded for one account. Opaque to this package."""

    creds: Any = None
    keys: Any = None


EventSink = Callable[[SessionEvent], None]


class SessionHandle(Protocol):
    """Live session as exposed by the engine."""

    @property
    def user_id(self) -> str | None:
        """JID of the logged-in account, once known."""
        ...

    def logout(self) -> None: ...

    def end(self) -> None: ...

    def send_message(self, jid: str, content: dict[str, Any]) -> Any: ...

    def send_presence_update(self, presence: str, to_jid: str | None = None) -> None: ...

    def read_messages(self, keys: list[dict[str, Any]]) -> None: ...

    def chat_modify(self, modification: dict[str, Any], jid: str) -> None: ...

    def fetch_message_history(
        self, count: int, oldest_key: dict[str, Any], oldest_timestamp: int
    ) -> Any: ...

    def send_receipts(self, keys: list[dict[str, Any]], receipt_type: str) -> None: ...

    def profile_picture_url(self, jid: str, kind: str = "preview") -> str | None: ...

    def on_whatsapp(self, jids: list[str]) -> list[dict[str, Any]]: ...

    def download_media(self, messages: list[dict[str, Any]]) -> dict[str, Any] | None: ...


class SessionEngine(Protocol):
    def open_session(
        self,
        phone_number: str,
        auth_state: AuthState,
        options: ConnectionOptions,
        on_event: EventSink,
    ) -> SessionHandle:
        """Start the handshake. Events flow to ``on_event`` from any thread."""
        ...


class AuthStateStore(Protocol):
    """Per-account credential storage."""

    def load(self, phone_number: str, options: ConnectionOptions) -> AuthState: ...

    def save(self, phone_number: str, creds: Any) -> None: ...

    def clear(self, phone_number: str) -> None: ...

    def list_connections(self) -> dict[str, ConnectionOptions]: ...


class InMemoryAuthStateStore:
    """Process-local store for development and tests.

    Nothing survives a restart; production deployments plug in a persistent
    store implementing ``AuthStateStore``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, AuthState] = {}
        self._options: dict[str, ConnectionOptions] = {}

    def load(self, phone_number: str, options: ConnectionOptions) -> AuthState:
        with self._lock:
            self._options[phone_number] = options.stored()
            return self._states.setdefault(phone_number, AuthState())

    def save(self, phone_number: str, creds: Any) -> None:
        with self._lock:
            state = self._states.setdefault(phone_number, AuthState())
            if isinstance(state.creds, dict) and isinstance(creds, dict):
                state.creds = {**state.creds, **creds}
            else:
                state.creds = creds

    def clear(self, phone_number: str) -> None:
        with self._lock:
            self._states.pop(phone_number, None)
            self._options.pop(phone_number, None)

    def list_connections(self) -> dict[str, ConnectionOptions]:
        with self._lock:
            return dict(self._options)

    def has(self, phone_number: str) -> bool:
        with self._lock:
            return phone_number in self._states


class NoSession:
    """Slot state when no session is live."""

    generation = 0
    active = False

    def require(self) -> SessionHandle:
        raise NotConnectedError()


@dataclass(frozen=True)
class ActiveSession:
    handle: SessionHandle
    generation: int
    active: bool = field(default=True, init=False)

    def require(self) -> SessionHandle:
        return self.handle


NO_SESSION = NoSession()

SessionSlot = NoSession | ActiveSession
