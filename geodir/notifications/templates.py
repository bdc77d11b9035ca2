"""Email templates for entry notifications and confirmation links."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape

from geodir.confirmation.models import TokenSubject
from geodir.events.types import ChangeKind
from geodir.notifications.notifier import EntrySummary

_SIGNATURE = "The geodir team"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _link(web_app_url: str | None, path: str) -> str | None:
    if not web_app_url:
        return None
    return web_app_url.rstrip("/") + path


def _details(summary: EntrySummary) -> list[tuple[str, str]]:
    """Labelled contact lines for the optional entry details that are set."""
    fields = (
        ("Address", summary.address),
        ("Website", summary.homepage),
        ("Email", summary.email),
        ("Phone", summary.telephone),
    )
    return [(label, value) for label, value in fields if value]


def render_entry_email(summary: EntrySummary, *, web_app_url: str | None) -> RenderedEmail:
    if summary.kind is ChangeKind.CREATED:
        intro = "A new entry was created in a map area you follow"
        subject = f"New entry: {summary.title}"
    else:
        intro = "An entry in a map area you follow was changed"
        subject = f"Entry changed: {summary.title}"

    category = summary.categories[0] if summary.categories else ""
    heading = f"{summary.title} ({category})" if category else summary.title
    tags = ", ".join(summary.tags)
    link = _link(web_app_url, f"/#/?entry={summary.entry_id}")

    text_lines = [
        "Hello,",
        f"{intro}:",
        "",
        heading,
        summary.description,
        "",
        f"Tags: {tags}",
        f"Position: {summary.lat:.5f}, {summary.lng:.5f}",
    ]
    details = _details(summary)
    text_lines += [f"{label}: {value}" for label, value in details]
    if link:
        text_lines += ["", f"View or edit the entry: {link}"]
    text_lines += [
        "",
        "You can cancel your map area subscriptions from your account settings.",
        "",
        _SIGNATURE,
    ]

    detail_html = "".join(f"<div>{escape(label)}: {escape(value)}</div>" for label, value in details)

    html = f"""
    <div style="font-family: ui-sans-serif, system-ui; line-height: 1.5;">
      <p style="margin:0 0 12px 0;">{escape(intro)}:</p>
      <div style="border:1px solid #e5e7eb; border-radius:12px; padding:12px; background:#fafafa;">
        <div><strong>{escape(heading)}</strong></div>
        <div>{escape(summary.description)}</div>
        <div style="color:#6b7280;">Tags: {escape(tags)}</div>
        {detail_html}
      </div>
      {f'<p style="margin:12px 0 0 0;"><a href="{escape(link)}">View or edit the entry</a></p>' if link else ''}
      <p style="margin:16px 0 0 0; color:#6b7280; font-size:12px;">{_SIGNATURE}</p>
    </div>
    """.strip()

    return RenderedEmail(subject=subject, html=html, text="\n".join(text_lines))


def render_token_email(subject: TokenSubject, token: str, *, web_app_url: str | None) -> RenderedEmail:
    if subject is TokenSubject.EMAIL:
        title = "Please confirm your email address"
        body = "Thanks for joining the map. Please confirm your email address:"
    else:
        title = "Please confirm your map area subscription"
        body = "You asked to be notified about entries in a map area. Please confirm the subscription:"

    link = _link(web_app_url, f"/confirm-email?token={token}")
    target = link or token
    text = "\n".join(["Hello,", body, "", target, "", _SIGNATURE])
    html = f"""
    <div style="font-family: ui-sans-serif, system-ui; line-height: 1.5;">
      <p style="margin:0 0 12px 0;">{escape(body)}</p>
      {f'<p><a href="{escape(link)}">Confirm</a></p>' if link else f'<p><code>{escape(token)}</code></p>'}
      <p style="margin:16px 0 0 0; color:#6b7280; font-size:12px;">{_SIGNATURE}</p>
    </div>
    """.strip()
    return RenderedEmail(subject=title, html=html, text=text)
