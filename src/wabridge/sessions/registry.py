"""Registry of live connections, at most one per phone number."""

import threading
from dataclasses import replace

from wabridge.config import IgnoreRules
from wabridge.errors import AlreadyConnectedError, NotConnectedError
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import hash_identifier, safe_log_context
from wabridge.sessions.connection import Connection, ConnectionState
from wabridge.sessions.engine import AuthStateStore, ConnectionOptions, SessionEngine
from wabridge.sessions.phone import normalize_phone_number
from wabridge.webhooks.dispatcher import WebhookDispatcher

logger = get_logger(__name__)


class ConnectionRegistry:
    """Creates, looks up and tears down connections.

    The map is guarded by a lock since connections remove themselves from
    their own worker threads while HTTP handlers add and look up entries.
    """

    def __init__(
        self,
        *,
        engine: SessionEngine,
        auth_store: AuthStateStore,
        dispatcher: WebhookDispatcher,
        ignore_rules: IgnoreRules | None = None,
        connection_factory=Connection,
    ) -> None:
        self._engine = engine
        self._auth_store = auth_store
        self._dispatcher = dispatcher
        self._ignore_rules = ignore_rules or IgnoreRules()
        self._connection_factory = connection_factory
        self._lock = threading.Lock()
        self._connections: dict[str, Connection] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, phone_number: str) -> bool:
        with self._lock:
            return normalize_phone_number(phone_number) in self._connections

    def phone_numbers(self) -> list[str]:
        with self._lock:
            return list(self._connections)

    def connect(self, phone_number: str, options: ConnectionOptions) -> Connection:
        """Create and connect. An entry without a live session is replaced.

        Raises:
            AlreadyConnectedError: If the number already has a live session.
            ValueError: If ``phone_number`` has no digits.
        """
        key = normalize_phone_number(phone_number)
        with self._lock:
            connection = self._connections.get(key)
            if connection is not None and (
                connection.is_active or connection.state is ConnectionState.RECONNECTING
            ):
                raise AlreadyConnectedError()
            stale = connection
            connection = self._connection_factory(
                key,
                options,
                engine=self._engine,
                auth_store=self._auth_store,
                dispatcher=self._dispatcher,
                ignore_rules=self._ignore_rules,
                on_close=self._remove,
            )
            self._connections[key] = connection

        if stale is not None:
            stale.stop()

        # Outside the lock: the handshake may block
        connection.connect()
        return connection

    def get(self, phone_number: str) -> Connection:
        """Raises NotConnectedError for unknown numbers."""
        key = normalize_phone_number(phone_number)
        with self._lock:
            connection = self._connections.get(key)
        if connection is None:
            raise NotConnectedError()
        return connection

    def logout(self, phone_number: str) -> None:
        self.get(phone_number).logout()

    def logout_all(self) -> dict[str, str]:
        """Log out every connection. Returns failures keyed by hashed number."""
        with self._lock:
            connections = list(self._connections.values())

        failures: dict[str, str] = {}
        for connection in connections:
            try:
                connection.logout()
            except Exception as e:
                failures[connection.log_id] = type(e).__name__
                logger.error(
                    "logout failed",
                    extra={
                        "extra_fields": safe_log_context(
                            connection=connection.log_id, error_type=type(e).__name__
                        )
                    },
                )

        logger.info(
            "logout all finished",
            extra={
                "extra_fields": safe_log_context(
                    total=len(connections), failed=len(failures)
                )
            },
        )
        return failures

    def reconnect_all(self) -> int:
        """Resume every connection found in auth storage. Returns the count resumed."""
        stored = self._auth_store.list_connections()
        resumed = 0
        for phone_number, options in stored.items():
            try:
                self.connect(phone_number, replace(options, is_reconnect=True))
                resumed += 1
            except Exception as e:
                logger.error(
                    "reconnect from auth store failed",
                    extra={
                        "extra_fields": safe_log_context(
                            connection=hash_identifier(phone_number),
                            error_type=type(e).__name__,
                        )
                    },
                )
        logger.info(
            "reconnected from auth store",
            extra={"extra_fields": safe_log_context(total=len(stored), resumed=resumed)},
        )
        return resumed

    def shutdown(self) -> None:
        """Stop every connection, keeping auth state for the next start."""
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for connection in connections:
            connection.stop()
        self._dispatcher.close()

    def _remove(self, connection: Connection) -> None:
        with self._lock:
            if self._connections.get(connection.phone_number) is connection:
                del self._connections[connection.phone_number]
