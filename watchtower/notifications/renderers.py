"""
Notification Renderers

Turn a channel-neutral notification payload into what each channel sends.
"""

from __future__ import annotations

from html import escape
from typing import Any, Callable

from pydantic import BaseModel

from watchtower.monitoring.models import Channel, IncidentSeverity, NotificationPayload

BRAND = "WatchTower Pro"
LOGO_URL = "https://watchtowerpro.com/logo.png"

SEVERITY_COLORS: dict[IncidentSeverity, int] = {
    IncidentSeverity.LOW: 0x22C55E,
    IncidentSeverity.MEDIUM: 0xF59E0B,
    IncidentSeverity.HIGH: 0xEF4444,
    IncidentSeverity.CRITICAL: 0xDC2626,
}
DEFAULT_COLOR = 0x6B7280


def _severity_color(severity: IncidentSeverity) -> int:
    return SEVERITY_COLORS.get(severity, DEFAULT_COLOR)


def _severity_emoji(severity: IncidentSeverity) -> str:
    """Get emoji for severity level."""
    return {
        IncidentSeverity.CRITICAL: "🔴",
        IncidentSeverity.HIGH: "🟠",
        IncidentSeverity.MEDIUM: "🟡",
        IncidentSeverity.LOW: "🔵",
    }.get(severity, "⚪")


def _format_time(payload: NotificationPayload) -> str:
    return payload.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def render_email_subject(payload: NotificationPayload) -> str:
    return payload.title


def render_email_text(payload: NotificationPayload) -> str:
    """Plain-text email body."""
    lines = [
        f"{BRAND} Alert - {payload.severity.value.upper()}",
        "",
        payload.title,
        "",
        payload.message,
        "",
    ]
    if payload.url:
        lines += [f"View Details: {payload.url}", ""]
    lines += [
        f"Time: {_format_time(payload)}",
        "",
        "---",
        f"This alert was sent by {BRAND} monitoring system.",
    ]
    return "\n".join(lines)


def render_email_html(payload: NotificationPayload) -> str:
    """HTML email body, styled by severity."""
    color = f"#{_severity_color(payload.severity):06x}"
    title = escape(payload.title)
    message = escape(payload.message).replace("\n", "<br>")
    button = (
        f'<a href="{escape(payload.url)}" class="button">View Details</a>' if payload.url else ""
    )

    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{title}</title>
    <style>
      body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 20px; background-color: #f9fafb; }}
      .container {{ max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; }}
      .header {{ background: {color}; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
      .content {{ padding: 20px; }}
      .severity {{ display: inline-block; padding: 4px 8px; border-radius: 4px; font-size: 12px; font-weight: 600; text-transform: uppercase; color: {color}; background: {color}20; }}
      .footer {{ padding: 20px; border-top: 1px solid #e5e7eb; font-size: 12px; color: #6b7280; }}
      .button {{ display: inline-block; padding: 10px 20px; background: {color}; color: white; text-decoration: none; border-radius: 4px; margin-top: 10px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header">
        <h1 style="margin: 0; font-size: 24px;">{BRAND} Alert</h1>
        <div class="severity">{payload.severity.value.lower()}</div>
      </div>
      <div class="content">
        <h2 style="margin: 0 0 10px 0; color: #1f2937;">{title}</h2>
        <p style="margin: 0 0 20px 0; color: #4b5563; line-height: 1.5;">{message}</p>
        {button}
      </div>
      <div class="footer">
        <p style="margin: 0;">This alert was sent by {BRAND} monitoring system.</p>
        <p style="margin: 5px 0 0 0;">Time: {_format_time(payload)}</p>
      </div>
    </div>
  </body>
</html>
"""


def render_discord(payload: NotificationPayload) -> dict[str, Any]:
    """Discord webhook body with a single embed."""
    fields = [
        {
            "name": "Severity",
            "value": f"{_severity_emoji(payload.severity)} {payload.severity.value.upper()}",
            "inline": True,
        },
    ]
    if payload.url:
        fields.append({
            "name": "Details",
            "value": f"[View Dashboard]({payload.url})",
            "inline": True,
        })

    embed = {
        "title": payload.title,
        "description": payload.message,
        "color": _severity_color(payload.severity),
        "timestamp": payload.timestamp.isoformat(),
        "footer": {"text": BRAND, "icon_url": LOGO_URL},
        "fields": fields,
    }
    return {"username": BRAND, "avatar_url": LOGO_URL, "embeds": [embed]}


def render_slack(payload: NotificationPayload) -> dict[str, Any]:
    """Slack incoming-webhook body using blocks."""
    fields = [
        {
            "type": "mrkdwn",
            "text": f"*Severity:*\n{_severity_emoji(payload.severity)} {payload.severity.value.upper()}",
        },
        {
            "type": "mrkdwn",
            "text": f"*Time:*\n{_format_time(payload)}",
        },
    ]
    monitor_name = payload.metadata.get("monitor_name")
    if monitor_name:
        fields.append({"type": "mrkdwn", "text": f"*Monitor:*\n{monitor_name}"})

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"🚨 {payload.title}", "emoji": True},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": payload.message},
        },
        {"type": "section", "fields": fields},
    ]
    if payload.url:
        blocks.append({
            "type": "actions",
            "elements": [{
                "type": "button",
                "text": {"type": "plain_text", "text": "View Dashboard"},
                "url": payload.url,
            }],
        })

    return {
        "blocks": blocks,
        "text": f"{payload.title} - {payload.message}",  # Fallback
    }


def render_webhook(payload: NotificationPayload) -> dict[str, Any]:
    """Generic webhook JSON envelope."""
    return {
        **payload.model_dump(mode="json"),
        "source": BRAND,
    }


def render_push(payload: NotificationPayload) -> dict[str, Any]:
    """Short push notification body."""
    return {
        "title": payload.title,
        "message": payload.message,
        "url": payload.url,
        "severity": payload.severity.value.lower(),
        "timestamp": payload.timestamp.isoformat(),
    }


def render_sms(payload: NotificationPayload) -> str:
    """Single-segment text message."""
    text = f"[{payload.severity.value}] {payload.title}"
    if payload.url:
        text += f" {payload.url}"
    return text if len(text) <= 160 else text[:157] + "..."


class EmailContent(BaseModel):
    """Rendered email parts."""

    subject: str
    text: str
    html: str


def render_email(payload: NotificationPayload) -> EmailContent:
    return EmailContent(
        subject=render_email_subject(payload),
        text=render_email_text(payload),
        html=render_email_html(payload),
    )


RENDERERS: dict[Channel, Callable[[NotificationPayload], Any]] = {
    Channel.EMAIL: render_email,
    Channel.DISCORD: render_discord,
    Channel.SLACK: render_slack,
    Channel.WEBHOOK: render_webhook,
    Channel.PUSH: render_push,
    Channel.SMS: render_sms,
}


def render(channel: Channel, payload: NotificationPayload) -> Any:
    """Render a payload for a channel."""
    return RENDERERS[channel](payload)
