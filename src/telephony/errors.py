"""Exceptions raised by the Manager (AMI) and Gateway (AGI) clients.

Call-control status codes such as 510/520 are not exceptions; they come back
as regular ``AgiResult`` values.
"""

from __future__ import annotations


class TelephonyError(Exception):
    default_detail: str = "Telephony protocol error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class TransportError(TelephonyError):
    default_detail = "Connection to the switch failed."


class ConnectionClosedError(TransportError):
    default_detail = "The switch closed the connection."


class HandshakeError(TransportError):
    default_detail = "Asterisk Manager banner not received."


class FramingError(TelephonyError):
    default_detail = "Stream ended in the middle of a protocol unit."


class AuthenticationError(TelephonyError):
    default_detail = "Manager login was refused."


class ReplyTimeoutError(TelephonyError):
    default_detail = "Timed out waiting for the correlated reply."

    def __init__(self, action_id: str | None = None, detail: str | None = None) -> None:
        if detail is None and action_id is not None:
            detail = f"Timed out waiting for reply to ActionID {action_id}"
        super().__init__(detail)
        self.action_id = action_id
