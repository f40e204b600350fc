"""Errors surfaced by connections and the webhook dispatcher."""


class NotConnectedError(Exception):
    """Raised when a command targets a phone number with no active session."""

    def __init__(self, message: str = "Phone number not connected") -> None:
        super().__init__(message)


class AlreadyConnectedError(Exception):
    """Raised when connect is requested for a number whose session is live."""

    def __init__(self, message: str = "Phone number already connected") -> None:
        super().__init__(message)


class SessionStartupError(Exception):
    """Raised when the session engine fails to create a session.

    Recovered inside ``Connection.connect``: logged, state stays IDLE.
    """

    pass


class WebhookAttemptFailed(Exception):
    """A single webhook attempt got a non-2xx response.

    Only used inside the dispatcher's retry loop. Exhausting every attempt is
    not an exception: it comes back as an undelivered ``DeliveryOutcome``.
    """

    def __init__(self, status_code: int, reason: str = "") -> None:
        super().__init__(f"webhook responded {status_code} {reason}".strip())
        self.status_code = status_code
        self.reason = reason
