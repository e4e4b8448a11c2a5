"""
notify/rendering.py -- Jinja2 rendering of one-time-code emails.

Each message kind has a subject, an HTML template extending base.html, and a
shared plain-text template. Autoescaping is on for .html so nothing that
reaches a template (the code is digits, but the heading and product name are
configurable) can inject markup.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


# kind -> (subject, heading, intro, html template, accent colour)
_KINDS: dict[str, tuple[str, str, str, str, str]] = {
    "verification": (
        "Email Verification - Code",
        "Email Verification",
        "Use the following code to verify your email address:",
        "verification.html",
        "#4CAF50",
    ),
    "login": (
        "Your Login Code",
        "Login Code",
        "Use the following code to finish signing in:",
        "login.html",
        "#2196F3",
    ),
    "password_reset": (
        "Password Reset - Code",
        "Password Reset",
        "Use the following code to reset your password:",
        "password_reset.html",
        "#FF9800",
    ),
}


def render_code_email(kind: str, code: str, ttl_minutes: int, product: str = "AuthKeep") -> RenderedEmail:
    """Render the subject, HTML and text bodies for a code email.

    Raises KeyError for an unknown kind.
    """
    subject, heading, intro, template_name, accent = _KINDS[kind]
    context = {
        "code": code,
        "heading": heading,
        "intro": intro,
        "accent": accent,
        "ttl_minutes": ttl_minutes,
        "product": product,
        "year": datetime.now(timezone.utc).year,
    }
    return RenderedEmail(
        subject=subject,
        html=_env.get_template(template_name).render(**context),
        text=_env.get_template("code.txt").render(**context),
    )
