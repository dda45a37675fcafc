"""
Error taxonomy shared by the server, the store and the console client.

Every error carries a stable machine code (what goes over the wire in the
`error` field) and the HTTP status the server answers with.
"""

from __future__ import annotations


class ConsoleError(Exception):
    """Base class for everything the console raises on purpose."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message}


class InvalidInput(ConsoleError):
    """Malformed client request. Not retried."""

    code = "INVALID_INPUT"
    status_code = 400


class DatabaseUnavailable(ConsoleError):
    """Persistence backend failed its health probe."""

    code = "DB_UNAVAILABLE"
    status_code = 503


class ChatNotFound(ConsoleError):
    code = "CHAT_NOT_FOUND"
    status_code = 404


class ProxyTransportError(ConsoleError):
    """
    The outbound call never produced an HTTP response
    (DNS, connect, timeout, TLS, anything raised by the transport).
    """

    code = "PROXY_TRANSPORT_ERROR"
    status_code = 502


class TargetConfigError(ConsoleError):
    """A TargetConfig failed validation; message is user-facing."""

    code = "INVALID_TARGET"
    status_code = 400


class TargetNotTested(ConsoleError):
    code = "TARGET_NOT_TESTED"
    status_code = 409


class SessionBusy(ConsoleError):
    """A submission is already in flight for this session."""

    code = "SESSION_BUSY"
    status_code = 409


_BY_STATUS = {
    cls.status_code: cls
    for cls in (InvalidInput, DatabaseUnavailable, ChatNotFound)
}


def error_from_response(status_code: int, data: dict | None) -> ConsoleError:
    """Rebuild a typed error from a server error body (used by the client)."""
    data = data or {}
    # 502 bodies carry the stringified transport error in `error` itself
    if status_code == 502:
        return ProxyTransportError(str(data.get("error") or f"HTTP {status_code}"))

    message = data.get("message") or data.get("error") or f"HTTP {status_code}"
    cls = _BY_STATUS.get(status_code)
    if cls is None:
        err = ConsoleError(message)
        err.status_code = status_code
        return err
    return cls(message)
