"""Connection lifecycle state machine for one account.

States: IDLE -> CONNECTING -> OPEN, OPEN <-> RECONNECTING, any -> CLOSED.
CLOSED is terminal; a later connect for the same number builds a new
Connection.

Session events are queued by the engine callback and drained by a single
worker thread per connection, so handlers for one account never run
concurrently and webhooks for one account are attempted in event order.
"""

import queue
import threading
from enum import Enum
from typing import Any, Callable

from wabridge.config import IgnoreRules
from wabridge.errors import NotConnectedError, SessionStartupError
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import hash_identifier, safe_log_context
from wabridge.sessions.engine import (
    NO_SESSION,
    WEBHOOK_EVENT_NAMES,
    ActiveSession,
    AuthStateStore,
    ConnectionOptions,
    SessionEngine,
    SessionEvent,
    SessionEventKind,
    SessionHandle,
    SessionSlot,
    WebhookEvent,
)
from wabridge.sessions.jids import filter_ignored
from wabridge.sessions.phone import phone_number_from_jid, same_phone_number
from wabridge.sessions.qr import qr_data_url
from wabridge.sessions.reconnect import attempts_exhausted, classify, disconnect_reason
from wabridge.webhooks.dispatcher import DeliveryOutcome, WebhookDispatcher

logger = get_logger(__name__)

PRESENCE_TIMEOUT_SECONDS = 60.0

CONNECTION_UPDATE = WEBHOOK_EVENT_NAMES[SessionEventKind.CONNECTION_STATE]

_STOP = object()


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class Connection:
    """One account's session lifecycle, driven by session engine events."""

    def __init__(
        self,
        phone_number: str,
        options: ConnectionOptions,
        *,
        engine: SessionEngine,
        auth_store: AuthStateStore,
        dispatcher: WebhookDispatcher,
        ignore_rules: IgnoreRules | None = None,
        on_close: Callable[["Connection"], None] | None = None,
        render_qr: Callable[[str], str] = qr_data_url,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self.phone_number = phone_number
        self.options = options
        self.log_id = hash_identifier(phone_number)

        self._engine = engine
        self._auth_store = auth_store
        self._dispatcher = dispatcher
        self._ignore_rules = ignore_rules or IgnoreRules()
        self._on_close = on_close
        self._render_qr = render_qr
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._state = ConnectionState.IDLE
        self._session: SessionSlot = NO_SESSION
        self._generation = 0
        self._is_reconnect = options.is_reconnect
        self._reconnect_count = 0
        self._detached_generation: int | None = None
        self._presence_timer: threading.Timer | None = None
        self._presence_token = 0

        self._events: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None

        self._handlers: dict[SessionEventKind, tuple[str, Callable[[Any], None]]] = {
            SessionEventKind.CONNECTION_STATE: (
                "handle_connection_update",
                self._handle_connection_update,
            ),
            SessionEventKind.CREDENTIALS_UPDATE: (
                "handle_credentials_update",
                self._handle_credentials_update,
            ),
            SessionEventKind.MESSAGES_RECEIVED: (
                "handle_messages_upsert",
                self._handle_messages_upsert,
            ),
            SessionEventKind.MESSAGES_CHANGED: (
                "handle_messages_update",
                self._handle_messages_update,
            ),
            SessionEventKind.RECEIPT_CHANGED: (
                "handle_message_receipt_update",
                self._handle_message_receipt_update,
            ),
            SessionEventKind.HISTORY_SNAPSHOT: (
                "handle_messaging_history_set",
                self._handle_messaging_history_set,
            ),
        }

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    @property
    def is_active(self) -> bool:
        return self._session.active

    def _log_ctx(self, **kwargs: Any) -> dict[str, str]:
        return safe_log_context(connection=self.log_id, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open a session unless one is already live.

        Session creation failures are logged and leave the connection IDLE.
        Auth-state load failures propagate to the caller.
        """
        with self._lock:
            if self._session.active:
                return
            if self._state is ConnectionState.CLOSED:
                logger.warning(
                    "connect ignored on closed connection",
                    extra={"extra_fields": self._log_ctx()},
                )
                return

            auth_state = self._auth_store.load(self.phone_number, self.options)
            self._generation += 1
            generation = self._generation

            try:
                handle = self._open_session(auth_state, generation)
            except SessionStartupError as e:
                self._state = ConnectionState.IDLE
                logger.error(
                    "failed to create session",
                    extra={"extra_fields": self._log_ctx(error=str(e))},
                )
                return

            self._session = ActiveSession(handle, generation)
            self._detached_generation = None
            self._state = ConnectionState.CONNECTING
            self._ensure_worker()

        logger.info(
            "session opened",
            extra={"extra_fields": self._log_ctx(generation=generation)},
        )

    def _open_session(self, auth_state, generation: int) -> SessionHandle:
        def on_event(event: SessionEvent) -> None:
            self._events.put((generation, event))

        try:
            return self._engine.open_session(
                self.phone_number, auth_state, self.options, on_event
            )
        except Exception as e:
            raise SessionStartupError(type(e).__name__) from e

    def logout(self) -> None:
        """Terminate the session and clear its auth state.

        Raises:
            NotConnectedError: If no session is live.
        """
        handle = self._session.require()
        try:
            handle.logout()
        except Exception as e:
            logger.error(
                "session logout failed",
                extra={"extra_fields": self._log_ctx(error_type=type(e).__name__)},
            )
        self._close()

    def stop(self) -> None:
        """Release the session on process shutdown. Auth state is kept."""
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                return
            self._cancel_presence_timer()
            slot = self._session
            self._session = NO_SESSION
            self._state = ConnectionState.CLOSED
            self._events.put(_STOP)

        if slot.active:
            try:
                slot.handle.end()
            except Exception as e:
                logger.warning(
                    "session end failed",
                    extra={"extra_fields": self._log_ctx(error_type=type(e).__name__)},
                )

    def _close(self) -> None:
        """Full close: clear auth state, drop the session, notify the registry."""
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                return
            try:
                self._auth_store.clear(self.phone_number)
            except Exception:
                logger.exception(
                    "failed to clear auth state",
                    extra={"extra_fields": self._log_ctx()},
                )
            self._cancel_presence_timer()
            self._session = NO_SESSION
            self._reconnect_count = 0
            self._state = ConnectionState.CLOSED
            self._events.put(_STOP)

        logger.info("connection closed", extra={"extra_fields": self._log_ctx()})
        if self._on_close is not None:
            self._on_close(self)

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(
            target=self._run,
            name=f"connection-{self.log_id}",
            daemon=True,
        )
        self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._events.get()
            if item is _STOP:
                return
            generation, event = item
            # Blocks while connect() is still publishing the session
            with self._lock:
                current = generation == self._session.generation
            if not current:
                logger.debug(
                    "dropping event from stale session",
                    extra={"extra_fields": self._log_ctx(kind=event.kind.value)},
                )
                continue
            self.handle_event(event)

    def handle_event(self, event: SessionEvent) -> None:
        """Dispatch one event. Handler errors are logged, never raised."""
        if self._state is ConnectionState.CLOSED:
            return
        entry = self._handlers.get(event.kind)
        if entry is None:
            logger.debug(
                "no handler for event",
                extra={"extra_fields": self._log_ctx(kind=str(event.kind))},
            )
            return

        handler_name, handler = entry
        try:
            handler(event.data)
        except Exception as e:
            logger.exception(
                "event handler failed",
                extra={
                    "extra_fields": self._log_ctx(
                        handler=handler_name, error_type=type(e).__name__
                    )
                },
            )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_connection_update(self, data: dict[str, Any]) -> None:
        update = dict(data or {})

        generation = self._session.generation
        if self._detached_generation is not None and generation == self._detached_generation:
            return

        decision = classify(update, self._is_reconnect)

        if decision.is_transient_phase:
            logger.debug(
                "reconnecting phase",
                extra={
                    "extra_fields": self._log_ctx(
                        is_new_login=bool(update.get("isNewLogin")),
                        is_reconnect=self._is_reconnect,
                        phase=update.get("connection"),
                    )
                },
            )
            self._is_reconnect = False
            self._handle_reconnecting()
            return

        if update.get("connection") == "close":
            cause, _ = disconnect_reason(update.get("lastDisconnect"))
            if decision.should_reconnect:
                logger.info(
                    "session closed, reconnecting",
                    extra={"extra_fields": self._log_ctx(cause=cause)},
                )
                if not self._handle_reconnecting():
                    return
                # Auth state is kept for the next session
                with self._lock:
                    self._session = NO_SESSION
                self.connect()
                return
            logger.info(
                "session closed permanently",
                extra={"extra_fields": self._log_ctx(cause=cause)},
            )
            self._close()

        if update.get("connection") == "open" and self._session.active:
            user_id = self._session.handle.user_id
            if user_id and not same_phone_number(
                phone_number_from_jid(user_id), self.phone_number
            ):
                self._handle_wrong_phone_number()
                return

        if update.get("qr"):
            update["connection"] = "connecting"
            update["qrDataUrl"] = self._render_qr(update["qr"])

        if update.get("isOnline"):
            update["connection"] = "open"

        with self._lock:
            if self._state is not ConnectionState.CLOSED:
                if update.get("connection") == "open":
                    self._reconnect_count = 0
                    self._state = ConnectionState.OPEN
                elif update.get("connection") == "connecting":
                    self._state = ConnectionState.CONNECTING

        self._send_to_webhook(WebhookEvent(CONNECTION_UPDATE, update))

    def _handle_reconnecting(self) -> bool:
        """Count a reconnect phase. Returns False if the connection was closed."""
        with self._lock:
            self._reconnect_count += 1
            exhausted = attempts_exhausted(self._reconnect_count)
            if not exhausted:
                self._state = ConnectionState.RECONNECTING

        if exhausted:
            logger.warning(
                "reconnect attempts exhausted, closing connection",
                extra={"extra_fields": self._log_ctx(attempts=self._reconnect_count)},
            )
            self._close()
            return False

        self._send_to_webhook(WebhookEvent(CONNECTION_UPDATE, {"connection": "reconnecting"}))
        return True

    def _handle_wrong_phone_number(self) -> None:
        logger.error(
            "session identity does not match configured phone number",
            extra={"extra_fields": self._log_ctx()},
        )
        self._send_to_webhook(WebhookEvent(CONNECTION_UPDATE, {"error": "wrong_phone_number"}))
        self._detached_generation = self._session.generation
        self.logout()

    def _handle_credentials_update(self, data: Any) -> None:
        self._auth_store.save(self.phone_number, data)

    def _handle_messages_upsert(self, data: dict[str, Any]) -> None:
        batch = self._filter_batch(data)
        if batch is None:
            return

        event = WebhookEvent(WEBHOOK_EVENT_NAMES[SessionEventKind.MESSAGES_RECEIVED], batch)
        if self.options.include_media:
            media = self._download_media(batch.get("messages", []))
            if media:
                event.extra = {"media": media}

        self._send_to_webhook(event)

    def _handle_messages_update(self, data: list[dict[str, Any]]) -> None:
        batch = self._filter_batch(data)
        if batch is None:
            return
        self._send_to_webhook(
            WebhookEvent(WEBHOOK_EVENT_NAMES[SessionEventKind.MESSAGES_CHANGED], batch),
            await_response=True,
        )

    def _handle_message_receipt_update(self, data: list[dict[str, Any]]) -> None:
        batch = self._filter_batch(data)
        if batch is None:
            return
        self._send_to_webhook(
            WebhookEvent(WEBHOOK_EVENT_NAMES[SessionEventKind.RECEIPT_CHANGED], batch)
        )

    def _handle_messaging_history_set(self, data: dict[str, Any]) -> None:
        if not self.options.sync_full_history:
            return
        # History payloads are large, media is never attached
        self._send_to_webhook(
            WebhookEvent(WEBHOOK_EVENT_NAMES[SessionEventKind.HISTORY_SNAPSHOT], data)
        )

    def _filter_batch(self, data: Any) -> Any:
        """Drop ignored-JID entries. Returns None when nothing is left."""
        if isinstance(data, list):
            kept = filter_ignored(data, self._ignore_rules)
            return kept if kept or not data else None
        if isinstance(data, dict) and isinstance(data.get("messages"), list):
            kept = filter_ignored(data["messages"], self._ignore_rules)
            if data["messages"] and not kept:
                return None
            return {**data, "messages": kept}
        return data

    def _download_media(self, messages: list[dict[str, Any]]) -> dict[str, Any] | None:
        if not messages or not self._session.active:
            return None
        try:
            return self._session.handle.download_media(messages)
        except Exception as e:
            logger.error(
                "media download failed",
                extra={"extra_fields": self._log_ctx(error_type=type(e).__name__)},
            )
            return None

    def _send_to_webhook(
        self, event: WebhookEvent, await_response: bool | None = None
    ) -> DeliveryOutcome:
        return self._dispatcher.deliver(
            event,
            url=self.options.webhook_url,
            verify_token=self.options.webhook_verify_token,
            await_response=await_response,
            connection=self.log_id,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def send_message(self, jid: str, content: dict[str, Any]) -> Any:
        return self._session.require().send_message(jid, content)

    def send_presence(self, presence: str, to_jid: str | None = None) -> None:
        """Send a presence update.

        ``available`` schedules an automatic ``unavailable`` after
        PRESENCE_TIMEOUT_SECONDS unless presence changes again first.
        """
        handle = self._session.require()
        if not handle.user_id:
            return

        handle.send_presence_update(presence, to_jid)

        if presence not in ("available", "unavailable"):
            return
        with self._lock:
            self._cancel_presence_timer()
            if presence == "available":
                timer = self._timer_factory(
                    PRESENCE_TIMEOUT_SECONDS,
                    self._expire_presence,
                    args=(self._presence_token, to_jid),
                )
                timer.daemon = True
                timer.start()
                self._presence_timer = timer

    def _expire_presence(self, token: int, to_jid: str | None) -> None:
        with self._lock:
            # Fired after being replaced or cancelled
            if token != self._presence_token or self._presence_timer is None:
                return
            self._presence_timer = None
            slot = self._session
        if not slot.active:
            return
        try:
            slot.handle.send_presence_update("unavailable", to_jid)
        except Exception as e:
            logger.error(
                "auto-unavailable presence failed",
                extra={"extra_fields": self._log_ctx(error_type=type(e).__name__)},
            )

    def _cancel_presence_timer(self) -> None:
        self._presence_token += 1
        if self._presence_timer is not None:
            self._presence_timer.cancel()
            self._presence_timer = None

    def read_messages(self, keys: list[dict[str, Any]]) -> None:
        return self._session.require().read_messages(keys)

    def chat_modify(self, modification: dict[str, Any], jid: str) -> None:
        return self._session.require().chat_modify(modification, jid)

    def fetch_message_history(
        self, count: int, oldest_key: dict[str, Any], oldest_timestamp: int
    ) -> Any:
        return self._session.require().fetch_message_history(
            count, oldest_key, oldest_timestamp
        )

    def send_receipts(self, keys: list[dict[str, Any]], receipt_type: str) -> None:
        return self._session.require().send_receipts(keys, receipt_type)

    def profile_picture_url(self, jid: str, kind: str = "preview") -> str | None:
        return self._session.require().profile_picture_url(jid, kind)

    def on_whatsapp(self, jids: list[str]) -> list[dict[str, Any]]:
        return self._session.require().on_whatsapp(jids)
