"""Shared test doubles for wabridge tests.

These are NOT fixtures - they are regular classes that tests instantiate.
"""

from __future__ import annotations

from typing import Any

from wabridge.sessions.engine import (
    AuthState,
    ConnectionOptions,
    SessionEvent,
    SessionEventKind,
    WebhookEvent,
)
from wabridge.webhooks.dispatcher import DeliveryOutcome

PHONE = "+5511988887777"
JID = "5511988887777:3@s.whatsapp.net"
CONTACT_JID = "5511912345678@s.whatsapp.net"


def make_options(**overrides: Any) -> ConnectionOptions:
    values = {
        "webhook_url": "http://hooks.test/wa",
        "webhook_verify_token": "verify-token-123",
    }
    values.update(overrides)
    return ConnectionOptions(**values)


def connection_update(**data: Any) -> SessionEvent:
    return SessionEvent(SessionEventKind.CONNECTION_STATE, data)


def close_update(cause: str | None = None, message: str | None = None, **extra: Any) -> SessionEvent:
    last_disconnect: dict[str, Any] = {}
    if cause is not None:
        last_disconnect["cause"] = cause
    if message is not None:
        last_disconnect["message"] = message
    return connection_update(connection="close", lastDisconnect=last_disconnect, **extra)


def message(remote_jid: str = CONTACT_JID, message_id: str = "MSG1", **fields: Any) -> dict:
    return {"key": {"remoteJid": remote_jid, "id": message_id, "fromMe": False}, **fields}


class LogRecorder:
    """Records log calls deterministically (replaces a module logger)."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def messages(self, level: str | None = None) -> list[str]:
        return [args[0] for lvl, args, _ in self.calls if level is None or lvl == level]

    def extra_fields(self, msg: str) -> list[dict]:
        return [
            kwargs.get("extra", {}).get("extra_fields", {})
            for _, args, kwargs in self.calls
            if args and args[0] == msg
        ]

    def get_all_logged_content(self) -> str:
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)


class FakeSessionHandle:
    def __init__(self, user_id: str | None = JID):
        self.user_id = user_id
        self.calls: list[tuple] = []
        self.logout_error: Exception | None = None
        self.media: dict | None = None

    def logout(self) -> None:
        self.calls.append(("logout",))
        if self.logout_error is not None:
            raise self.logout_error

    def end(self) -> None:
        self.calls.append(("end",))

    def send_message(self, jid: str, content: dict) -> dict:
        self.calls.append(("send_message", jid, content))
        return {"key": {"id": "SENT1", "remoteJid": jid}}

    def send_presence_update(self, presence: str, to_jid: str | None = None) -> None:
        self.calls.append(("send_presence_update", presence, to_jid))

    def read_messages(self, keys: list[dict]) -> None:
        self.calls.append(("read_messages", keys))

    def chat_modify(self, modification: dict, jid: str) -> None:
        self.calls.append(("chat_modify", modification, jid))

    def fetch_message_history(self, count: int, oldest_key: dict, oldest_timestamp: int) -> str:
        self.calls.append(("fetch_message_history", count, oldest_key, oldest_timestamp))
        return "history-request-1"

    def send_receipts(self, keys: list[dict], receipt_type: str) -> None:
        self.calls.append(("send_receipts", keys, receipt_type))

    def profile_picture_url(self, jid: str, kind: str = "preview") -> str | None:
        self.calls.append(("profile_picture_url", jid, kind))
        return "https://pps.test/pic.jpg"

    def on_whatsapp(self, jids: list[str]) -> list[dict]:
        self.calls.append(("on_whatsapp", jids))
        return [{"jid": j, "exists": True} for j in jids]

    def download_media(self, messages: list[dict]) -> dict | None:
        self.calls.append(("download_media", messages))
        return self.media

    def presence_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] == "send_presence_update"]


class FakeSessionEngine:
    """Opens FakeSessionHandles and keeps the event sinks it was given."""

    def __init__(self, user_id: str | None = JID):
        self.user_id = user_id
        self.opened: list[tuple[str, AuthState, ConnectionOptions]] = []
        self.handles: list[FakeSessionHandle] = []
        self.sinks: list = []
        self.fail_with: Exception | None = None

    def open_session(self, phone_number, auth_state, options, on_event):
        self.opened.append((phone_number, auth_state, options))
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeSessionHandle(self.user_id)
        self.handles.append(handle)
        self.sinks.append(on_event)
        return handle

    @property
    def open_count(self) -> int:
        return len(self.opened)


class RecordingDispatcher:
    """Stands in for WebhookDispatcher; records instead of posting."""

    def __init__(self):
        self.deliveries: list[tuple[WebhookEvent, bool | None]] = []
        self.closed = False

    def deliver(self, event, *, url, verify_token, await_response=None, connection=""):
        self.deliveries.append((event, await_response))
        return DeliveryOutcome(delivered=True, attempts=1, status_code=200)

    def close(self) -> None:
        self.closed = True

    @property
    def events(self) -> list[tuple[str, Any]]:
        return [(event.event, event.data) for event, _ in self.deliveries]


class FakeTimer:
    """threading.Timer double: never fires unless told to."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function(*self.args, **self.kwargs)


class TimerFactory:
    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None) -> FakeTimer:
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer
