"""Weekly digest email rendering and SMTP delivery."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, NamedTuple
from urllib.parse import unquote, urlsplit

from jinja2 import BaseLoader, Environment

from roledigest.config import Settings
from roledigest.services.normalizer import is_video_url, normalize_url

logger = logging.getLogger(__name__)

_TYPE_ORDER = ("video", "social", "news", "web", "custom")
_TYPE_LABELS = {
    "video": "Video",
    "social": "Social",
    "news": "News",
    "web": "Web",
    "custom": "Custom",
}
_ACTION_LABELS = {
    "video": "Watch",
    "social": "View post",
    "news": "Read",
    "web": "Read",
    "custom": "Open",
}

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

DIGEST_HTML_TEMPLATE = """\
{%- macro entry(item) -%}
<div style="padding:12px 0;border-bottom:1px solid #eee5d9;">
{%- if item.meta %}<div style="font-size:12px;letter-spacing:1px;color:#8c7b6b;text-transform:uppercase;margin-bottom:6px;">{{ item.meta }}</div>{% endif -%}
<div style="font-size:16px;font-weight:600;margin-bottom:6px;">{{ item.title }}</div>
{%- if item.summary %}<div style="font-size:14px;line-height:1.6;color:#3d3a35;margin-bottom:8px;">{{ item.summary }}</div>{% endif -%}
{%- if item.url %}<a href="{{ item.url }}" style="color:{{ accent }};text-decoration:none;">{{ item.action }}</a>{% endif -%}
</div>
{%- endmacro -%}
<div style="margin:0 auto;max-width:640px;padding:24px 18px;font-family:Arial, sans-serif;color:#1d1a16;background:#fffaf4;border:1px solid #f3e6d8;border-radius:20px;">
<div style="font-size:12px;letter-spacing:2px;text-transform:uppercase;color:#8c7b6b;margin-bottom:10px;">Role Model Digest</div>
<h2 style="font-size:28px;margin:0 0 8px;">{{ role_model_name or "Role Model" }}</h2>
<div style="color:{{ muted }};font-size:14px;margin-bottom:16px;">Week of {{ week_label }}</div>
<div style="font-size:16px;line-height:1.7;color:#2e2b27;margin-bottom:18px;">{{ summary_text }}</div>
{%- if spotlight %}
<div style="margin-top:20px;padding:16px;border-radius:16px;background:#fff3e6;border:1px solid #f2d8c2;">
<div style="font-size:12px;letter-spacing:2px;text-transform:uppercase;color:{{ muted }};margin-bottom:6px;">Video spotlight</div>
<div style="font-size:16px;font-weight:600;margin-bottom:6px;">{{ spotlight.title }}</div>
<div style="font-size:14px;line-height:1.6;color:#3d3a35;margin-bottom:10px;">{{ spotlight.summary }}</div>
{%- if spotlight.url %}<a href="{{ spotlight.url }}" style="color:{{ accent }};text-decoration:none;">Watch the video</a>{% endif %}
</div>
{%- endif %}
{%- for section in sections %}
<div style="margin-top:24px;">
<div style="font-size:13px;letter-spacing:2px;text-transform:uppercase;color:{{ muted }};margin-bottom:8px;">{{ section.label }}</div>
{%- for item in section["items"] %}
{{ entry(item) }}
{%- endfor %}
</div>
{%- endfor %}
<div style="margin-top:26px;padding-top:18px;border-top:1px solid #eee5d9;">
{%- if digest_url %}
<a href="{{ digest_url }}" style="background:{{ accent }};color:#fff;text-decoration:none;padding:10px 16px;border-radius:999px;font-size:14px;">View full digest</a>
{%- endif %}
{%- if social_url %}
<a href="{{ social_url }}" style="background:#e7f5f1;color:#1f7a65;text-decoration:none;padding:10px 16px;border-radius:999px;font-size:14px;">Catch up with peers</a>
{%- endif %}
</div>
</div>
"""

DIGEST_TEXT_TEMPLATE = """\
{{ role_model_name }} digest
Week of {{ week_label }}

{{ summary_text }}

{% for item in items %}
- {{ item.source_title or "Update" }}: {{ item.summary or "" }}{{ " (" ~ item.source_url ~ ")" if item.source_url else "" }}
{% endfor %}
{% if digest_url %}

View full digest: {{ digest_url }}
{% endif %}
{% if social_url %}
Social: {{ social_url }}
{% endif %}
"""

_html_env = Environment(loader=BaseLoader(), autoescape=True)
_text_env = Environment(loader=BaseLoader(), autoescape=False, trim_blocks=True)


class DigestEmail(NamedTuple):
    """Rendered email parts."""

    subject: str
    text: str
    html: str


def build_share_url(client_origin: str, digest_id: str | None) -> str:
    """Public link to a single digest."""
    origin = client_origin.rstrip("/")
    if not digest_id:
        return origin
    return f"{origin}/digest/share/{digest_id}"


def format_week_label(week_start: str) -> str:
    """``2024-03-04`` -> ``Mar 4, 2024``; unparseable input is returned as-is."""
    if not week_start:
        return ""
    try:
        parsed = date.fromisoformat(week_start)
    except ValueError:
        return week_start
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def _item_key(item: dict[str, Any]) -> str:
    url = normalize_url(item.get("source_url") or "")
    if url:
        return f"url:{url}"
    return f"text:{item.get('source_title') or ''}|{item.get('summary') or ''}".lower()


def _display_type(item: dict[str, Any]) -> str:
    if item.get("source_type") == "video" or is_video_url(item.get("source_url")):
        return "video"
    return item.get("source_type") or "web"


def _entry_view(item: dict[str, Any], kind: str) -> dict[str, str]:
    meta = " | ".join(
        part
        for part in (item.get("source_date") or "", "Official" if item.get("is_official") else "")
        if part
    )
    return {
        "title": item.get("source_title") or ("Video" if kind == "video" else "Update"),
        "summary": item.get("summary") or "",
        "url": normalize_url(item.get("source_url") or ""),
        "meta": meta,
        "action": _ACTION_LABELS.get(kind, "Open"),
    }


def build_digest_html(
    role_model_name: str, digest: dict[str, Any], digest_url: str, social_url: str
) -> str:
    """HTML body: summary, the first video as a spotlight, then one section per type."""
    items = list(digest.get("items") or [])
    spotlight = next((item for item in items if _display_type(item) == "video"), None)
    spotlight_key = _item_key(spotlight) if spotlight else ""

    grouped: dict[str, list[dict[str, Any]]] = {}
    for item in items:
        if spotlight and _item_key(item) == spotlight_key:
            continue
        grouped.setdefault(_display_type(item), []).append(item)

    sections = [
        {
            "label": _TYPE_LABELS[kind],
            "items": [_entry_view(item, kind) for item in grouped[kind]],
        }
        for kind in _TYPE_ORDER
        if grouped.get(kind)
    ]
    template = _html_env.from_string(DIGEST_HTML_TEMPLATE)
    return template.render(
        role_model_name=role_model_name,
        week_label=format_week_label(digest.get("week_start") or ""),
        summary_text=digest.get("summary_text") or "",
        spotlight=_entry_view(spotlight, "video") if spotlight else None,
        sections=sections,
        digest_url=digest_url,
        social_url=social_url,
        accent="#ff6b2d",
        muted="#6c5a4d",
    )


def build_digest_text(
    role_model_name: str, digest: dict[str, Any], digest_url: str, social_url: str
) -> str:
    """Plain-text alternative body."""
    template = _text_env.from_string(DIGEST_TEXT_TEMPLATE)
    return template.render(
        role_model_name=role_model_name,
        week_label=format_week_label(digest.get("week_start") or ""),
        summary_text=digest.get("summary_text") or "",
        items=list(digest.get("items") or []),
        digest_url=digest_url,
        social_url=social_url,
    )


def build_digest_email(
    role_model_name: str, digest: dict[str, Any], digest_url: str, social_url: str
) -> DigestEmail:
    """Render the subject and both bodies for a stored digest.

    Args:
        role_model_name: Display name used in the subject and heading.
        digest: Stored digest with ``week_start``, ``summary_text`` and ``items``.
        digest_url: Public share link for this digest.
        social_url: Link to the peers page, omitted when empty.

    Returns:
        ``DigestEmail`` with subject, text and HTML.
    """
    subject = f"Your {role_model_name} digest for the week of {digest.get('week_start') or ''}"
    return DigestEmail(
        subject=subject,
        text=build_digest_text(role_model_name, digest, digest_url, social_url),
        html=build_digest_html(role_model_name, digest, digest_url, social_url),
    )


def _deliver(smtp_url: str, sender: str, to: str, message: MIMEMultipart) -> None:
    parsed = urlsplit(smtp_url)
    secure = parsed.scheme == "smtps"
    host = parsed.hostname or "localhost"
    port = parsed.port or (465 if secure else 587)
    smtp_class = smtplib.SMTP_SSL if secure else smtplib.SMTP
    with smtp_class(host, port, timeout=30) as smtp:
        if not secure and port != 25:
            smtp.starttls()
        if parsed.username:
            smtp.login(unquote(parsed.username), unquote(parsed.password or ""))
        smtp.send_message(message, from_addr=sender, to_addrs=[to])


async def send_digest_email(
    settings: Settings, to: str, subject: str, text: str, html: str
) -> bool:
    """Send a multipart digest email through ``settings.smtp_url``.

    Returns:
        ``False`` when SMTP is not configured, ``True`` once sent.

    Raises:
        smtplib.SMTPException | OSError: Delivery failed.
    """
    if not settings.smtp_url:
        logger.debug("SMTP not configured, skipping digest email to %s", to)
        return False

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.email_from
    message["To"] = to
    message.attach(MIMEText(text, "plain", "utf-8"))
    message.attach(MIMEText(html, "html", "utf-8"))

    await asyncio.to_thread(_deliver, settings.smtp_url, settings.email_from, to, message)
    logger.info("Digest email sent to %s", to)
    return True
