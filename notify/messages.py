"""
notify/messages.py -- Builders for the messages the identity service sends.

Markup is deliberately plain; anything user-supplied (names, admin text) is
HTML-escaped before it lands in html_body. Links carry the raw one-time
token, so these bodies must never be logged.
"""

from __future__ import annotations

import html

from notify.sender import Notification


def _greeting(name: str) -> str:
    return f"Hello {name}," if name else "Hello,"


def verification_message(to: str, name: str, token: str, app_name: str, app_url: str) -> Notification:
    link = f"{app_url.rstrip('/')}/verify-email?token={token}"
    subject = f"Verify your {app_name} account"
    text = (
        f"{_greeting(name)}\n\n"
        f"Confirm your email address to activate your {app_name} account:\n{link}\n\n"
        "The link expires in 24 hours. If you did not sign up, ignore this message."
    )
    body = (
        f"<p>{html.escape(_greeting(name))}</p>"
        f"<p>Confirm your email address to activate your {html.escape(app_name)} account:</p>"
        f'<p><a href="{html.escape(link)}">Verify email</a></p>'
        "<p>The link expires in 24 hours. If you did not sign up, ignore this message.</p>"
    )
    return Notification(to=to, subject=subject, html_body=body, text_body=text)


def password_reset_message(to: str, name: str, token: str, app_name: str, app_url: str) -> Notification:
    link = f"{app_url.rstrip('/')}/reset-password?token={token}"
    subject = f"Reset your {app_name} password"
    text = (
        f"{_greeting(name)}\n\n"
        f"Someone asked to reset the password for your {app_name} account:\n{link}\n\n"
        "The link expires in 1 hour. If it was not you, no action is needed."
    )
    body = (
        f"<p>{html.escape(_greeting(name))}</p>"
        f"<p>Someone asked to reset the password for your {html.escape(app_name)} account.</p>"
        f'<p><a href="{html.escape(link)}">Choose a new password</a></p>'
        "<p>The link expires in 1 hour. If it was not you, no action is needed.</p>"
    )
    return Notification(to=to, subject=subject, html_body=body, text_body=text)


def welcome_message(to: str, name: str, app_name: str, app_url: str) -> Notification:
    subject = f"Welcome to {app_name}"
    text = f"{_greeting(name)}\n\nYour email is verified. Sign in at {app_url}"
    body = (
        f"<p>{html.escape(_greeting(name))}</p>"
        f"<p>Your email is verified. Sign in at "
        f'<a href="{html.escape(app_url)}">{html.escape(app_url)}</a></p>'
    )
    return Notification(to=to, subject=subject, html_body=body, text_body=text)


def admin_message(to: str, name: str, subject: str, message: str, app_name: str) -> Notification:
    text = f"{_greeting(name)}\n\n{message}\n\n-- {app_name}"
    paragraphs = "".join(f"<p>{html.escape(line)}</p>" for line in message.splitlines() if line.strip())
    body = f"<p>{html.escape(_greeting(name))}</p>{paragraphs}<p>-- {html.escape(app_name)}</p>"
    return Notification(to=to, subject=subject, html_body=body, text_body=text)
