"""Unit tests for notify/ -- email rendering and the two Notifier implementations.

HTTP delivery is tested against a MagicMock requests.Session; nothing here
touches the network.
"""

from unittest.mock import MagicMock

import pytest
import requests

from core.config import Settings
from notify.rendering import render_code_email
from notify.senders import HttpMailNotifier, LogNotifier, build_notifier


class TestRendering:
    @pytest.mark.parametrize(
        "kind,subject",
        [
            ("verification", "Email Verification - Code"),
            ("login", "Your Login Code"),
            ("password_reset", "Password Reset - Code"),
        ],
    )
    def test_each_kind_renders_code_and_ttl(self, kind, subject):
        email = render_code_email(kind, "482913", ttl_minutes=10)

        assert email.subject == subject
        assert "482913" in email.html
        assert "482913" in email.text
        assert "10 minutes" in email.text

    def test_html_is_autoescaped(self):
        email = render_code_email("login", "123456", ttl_minutes=5, product="<b>Evil</b>")
        assert "<b>Evil</b>" not in email.html
        assert "&lt;b&gt;Evil&lt;/b&gt;" in email.html

    def test_unknown_kind_raises(self):
        with pytest.raises(KeyError):
            render_code_email("newsletter", "123456", ttl_minutes=5)


class TestLogNotifier:
    def test_always_accepts(self):
        notifier = LogNotifier()
        assert notifier.send_verification_code("a@example.com", "111111") is True
        assert notifier.send_login_code("a@example.com", "111111") is True
        assert notifier.send_password_reset_code("a@example.com", "111111") is True


class TestHttpMailNotifier:
    def _notifier(self, session):
        return HttpMailNotifier(
            api_url="https://mail.example.test/send",
            sender="no-reply@example.test",
            api_token="tkn",
            ttl_minutes=10,
            session=session,
        )

    def test_posts_rendered_email(self):
        session = MagicMock()
        session.post.return_value.is_redirect = False
        assert self._notifier(session).send_login_code("to@example.com", "654321") is True

        _, kwargs = session.post.call_args
        assert session.post.call_args.args[0] == "https://mail.example.test/send"
        assert kwargs["json"]["to"] == "to@example.com"
        assert kwargs["json"]["from"] == "no-reply@example.test"
        assert kwargs["json"]["subject"] == "Your Login Code"
        assert "654321" in kwargs["json"]["html"]
        assert kwargs["headers"]["Authorization"] == "Bearer tkn"
        assert kwargs["timeout"] == 10.0
        assert kwargs["allow_redirects"] is False

    def test_redirect_is_not_followed_and_returns_false(self):
        session = MagicMock()
        session.post.return_value.is_redirect = True
        session.post.return_value.status_code = 302
        assert self._notifier(session).send_login_code("to@example.com", "654321") is False
        assert session.post.call_count == 1

    def test_network_error_returns_false(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("relay unreachable")
        assert self._notifier(session).send_verification_code("to@example.com", "111111") is False

    def test_http_error_returns_false(self):
        session = MagicMock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
        assert self._notifier(session).send_password_reset_code("to@example.com", "111111") is False


def test_build_notifier_picks_sender_from_settings():
    base = {"_env_file": None, "debug": True, "jwt_secret": "", "jwt_refresh_secret": ""}
    assert isinstance(build_notifier(Settings(**base)), LogNotifier)
    assert isinstance(build_notifier(Settings(**base, mail_api_url="https://mail.example.test")), HttpMailNotifier)
