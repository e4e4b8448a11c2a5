"""
notify/senders.py -- Concrete Notifier implementations.

  LogNotifier      -- development default. Logs that a code was sent; the code
                      itself only at DEBUG.
  HttpMailNotifier -- renders the email with Jinja2 and POSTs it as JSON to a
                      transactional mail relay (MAIL_API_URL) with requests.

build_notifier(settings) picks one: a configured MAIL_API_URL means HTTP,
otherwise logging. Neither retries; a failure returns False and the engine
fails the enclosing flow.
"""

from __future__ import annotations

import logging

import requests

from core.config import Settings
from notify.protocol import Notifier
from notify.rendering import render_code_email

logger = logging.getLogger("authkeep.notify")


class LogNotifier:
    """Notifier that only logs. Never fails."""

    def send_verification_code(self, email: str, code: str) -> bool:
        return self._log("verification", email, code)

    def send_login_code(self, email: str, code: str) -> bool:
        return self._log("login", email, code)

    def send_password_reset_code(self, email: str, code: str) -> bool:
        return self._log("password_reset", email, code)

    @staticmethod
    def _log(kind: str, email: str, code: str) -> bool:
        logger.info("Would send %s code to %s (no mail relay configured)", kind, email)
        logger.debug("%s code for %s: %s", kind, email, code)
        return True


class HttpMailNotifier:
    """Deliver code emails through an HTTP mail relay.

    Payload: {"from", "to", "subject", "html", "text"}; Authorization: Bearer
    <MAIL_API_TOKEN> when a token is configured. Any non-2xx response or
    network error is logged and reported as False.
    """

    def __init__(
        self,
        api_url: str,
        sender: str,
        api_token: str = "",
        ttl_minutes: int = 10,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_url = api_url
        self._sender = sender
        self._api_token = api_token
        self._ttl_minutes = ttl_minutes
        self._timeout = timeout
        self._session = session or requests.Session()

    def send_verification_code(self, email: str, code: str) -> bool:
        return self._send("verification", email, code)

    def send_login_code(self, email: str, code: str) -> bool:
        return self._send("login", email, code)

    def send_password_reset_code(self, email: str, code: str) -> bool:
        return self._send("password_reset", email, code)

    def _send(self, kind: str, email: str, code: str) -> bool:
        rendered = render_code_email(kind, code, self._ttl_minutes)
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        payload = {
            "from": self._sender,
            "to": email,
            "subject": rendered.subject,
            "html": rendered.html,
            "text": rendered.text,
        }
        try:
            # The relay is a single known endpoint; redirects are not followed.
            resp = self._session.post(
                self._api_url, json=payload, headers=headers, timeout=self._timeout, allow_redirects=False
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Mail relay rejected %s email to %s: %s", kind, email, e)
            return False
        if resp.is_redirect:
            logger.warning("Mail relay redirected %s email to %s (%d); not followed", kind, email, resp.status_code)
            return False
        logger.info("Sent %s email to %s", kind, email)
        return True


def build_notifier(settings: Settings) -> Notifier:
    if settings.mail_api_url:
        return HttpMailNotifier(
            api_url=settings.mail_api_url,
            sender=settings.mail_from,
            api_token=settings.mail_api_token,
            ttl_minutes=settings.otp_expire_minutes,
            timeout=settings.mail_timeout_seconds,
        )
    logger.warning("MAIL_API_URL not set -- one-time codes will only be logged")
    return LogNotifier()
