"""Notification templates for loyalty events."""

from __future__ import annotations

import html
from dataclasses import dataclass


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def render_account_notification(
    *,
    title: str,
    message: str,
    contact_name: str | None,
) -> RenderedTemplate:
    """Render the email companion of an in-app loyalty notification."""

    greeting = f"Hi {contact_name}," if contact_name else "Hi there,"
    text_body = "\n".join(
        [
            greeting,
            "",
            message,
            "",
            "You can follow your points and rewards from your loyalty dashboard.",
            "The Brewpoints Team",
        ]
    )
    html_body = f"""<html>
  <body>
    <p>{html.escape(greeting)}</p>
    <p>{html.escape(message)}</p>
    <p>You can follow your points and rewards from your loyalty dashboard.</p>
    <p>The Brewpoints Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=title, text_body=text_body, html_body=html_body)
