"""
Channel-specific rendering of notification envelopes.
"""
from dataclasses import dataclass
from html import escape
from typing import Optional

from app.config import settings
from app.models.notification import NotificationEnvelope, NotificationType

BRAND = "Property Maintenance"
FOOTER = f"This is an automated notification from the {BRAND} system."

URGENCY_COLORS = {
    "emergency": "#e74c3c",
    "critical": "#e74c3c",
    "urgent": "#f39c12",
    "high": "#f39c12",
    "medium": "#f1c40f",
    "normal": "#f1c40f",
    "low": "#27ae60",
    "routine": "#27ae60",
}
DEFAULT_COLOR = "#7f8c8d"

# (heading, heading colour, callout text, callout background, callout border)
_EMAIL_SECTIONS = {
    NotificationType.CASE_CREATED: (
        "New Maintenance Case Created",
        "#e74c3c",
        "Action Required: Please review and assign a contractor to this case.",
        "#fff3cd",
        "#ffeaa7",
    ),
    NotificationType.CONTRACTOR_ASSIGNED: (
        "New Assignment",
        "#27ae60",
        "Next Steps: Please log into the contractor dashboard to view details and schedule service.",
        "#d4edda",
        "#c3e6cb",
    ),
    NotificationType.CASE_UPDATED: (
        "Maintenance Case Updated",
        "#2980b9",
        "No action is required unless noted above.",
        "#e8f4fd",
        "#b6dcf7",
    ),
    NotificationType.EMERGENCY_ALERT: (
        "EMERGENCY Maintenance Alert",
        "#e74c3c",
        "Immediate Action Required: This case involves a safety risk.",
        "#f8d7da",
        "#f5c6cb",
    ),
    NotificationType.APPROVAL_REQUESTED: (
        "Appointment Approval Needed",
        "#2c3e50",
        "Please approve or decline access using the links in this message.",
        "#fff3cd",
        "#ffeaa7",
    ),
}

_SMS_PREFIXES = {
    NotificationType.CASE_CREATED: "NEW CASE",
    NotificationType.CONTRACTOR_ASSIGNED: "NEW JOB",
    NotificationType.CASE_UPDATED: "CASE UPDATE",
    NotificationType.EMERGENCY_ALERT: "EMERGENCY",
    NotificationType.APPROVAL_REQUESTED: "APPROVAL NEEDED",
}


@dataclass
class EmailContent:
    subject: str
    html: str
    text: str


def urgency_color(urgency_level: Optional[str]) -> str:
    return URGENCY_COLORS.get((urgency_level or "").lower(), DEFAULT_COLOR)


def is_emergency(envelope: NotificationEnvelope) -> bool:
    return (
        envelope.type == NotificationType.EMERGENCY_ALERT
        or (envelope.urgency_level or "").lower() in ("emergency", "critical")
    )


def truncate_sms(text: str, limit: Optional[int] = None) -> str:
    """Collapse whitespace and cut at a word boundary, ending with an ellipsis."""
    limit = limit or settings.sms_max_length
    text = " ".join(text.split())
    if len(text) <= limit:
        return text

    cut = text[: limit - 3]
    if " " in cut:
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip(" ,;:-") + "..."


def render_email(envelope: NotificationEnvelope) -> EmailContent:
    """Render the HTML and plain-text bodies for an envelope."""
    heading, heading_color, callout, callout_bg, callout_border = _EMAIL_SECTIONS[envelope.type]
    subject = envelope.subject
    if is_emergency(envelope) and not subject.upper().startswith("EMERGENCY"):
        subject = f"EMERGENCY: {subject}"

    details = []
    if envelope.case_number:
        details.append(f"<p><strong>Case Number:</strong> {escape(envelope.case_number)}</p>")
    if envelope.urgency_level:
        details.append(
            f'<p><strong>Urgency Level:</strong> <span style="color: '
            f'{urgency_color(envelope.urgency_level)}">{escape(envelope.urgency_level)}</span></p>'
        )
    body = escape(envelope.message).replace("\n", "<br>")

    html = f"""<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <div style="background: #f8f9fa; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
        <h2 style="color: #2c3e50; margin: 0;">{BRAND}</h2>
      </div>
      <h3 style="color: {heading_color};">{escape(heading)}</h3>
      {''.join(details)}
      <p>{body}</p>
      <div style="background: {callout_bg}; border: 1px solid {callout_border}; padding: 15px; border-radius: 4px; margin: 20px 0;">
        <p style="margin: 0;">{escape(callout)}</p>
      </div>
      <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
      <p style="font-size: 12px; color: #666;">{FOOTER}</p>
    </div>
  </body>
</html>"""

    text_lines = [BRAND, "", subject, "", envelope.message, ""]
    if envelope.case_number:
        text_lines.append(f"Case Number: {envelope.case_number}")
    if envelope.urgency_level:
        text_lines.append(f"Urgency Level: {envelope.urgency_level}")
    text_lines.extend(["", FOOTER])

    return EmailContent(subject=subject, html=html, text="\n".join(text_lines).strip())


def render_sms(envelope: NotificationEnvelope, limit: Optional[int] = None) -> str:
    """Render a single SMS body no longer than ``limit`` characters."""
    prefix = _SMS_PREFIXES[envelope.type]
    if is_emergency(envelope) and prefix != "EMERGENCY":
        prefix = f"EMERGENCY {prefix}"

    head = prefix
    if envelope.case_number:
        head += f": {envelope.case_number}"
    if envelope.urgency_level:
        head += f" ({envelope.urgency_level})"

    if envelope.type == NotificationType.APPROVAL_REQUESTED:
        # Signed links do not fit in one SMS; they go out by email and push.
        return truncate_sms(
            f"{head} - A maintenance visit to your unit needs your approval. "
            "Check your email to approve or decline.",
            limit=limit,
        )

    return truncate_sms(f"{head} - {envelope.message}", limit=limit)
