"""Notifier protocol -- the engine depends on this, not a concrete sender.

Each method returns True when the message was accepted for delivery and False
when it was not. Delivery itself is best-effort; a False return fails the
enclosing flow and the engine does not retry.
"""

from typing import Protocol


class Notifier(Protocol):
    def send_verification_code(self, email: str, code: str) -> bool: ...

    def send_login_code(self, email: str, code: str) -> bool: ...

    def send_password_reset_code(self, email: str, code: str) -> bool: ...
