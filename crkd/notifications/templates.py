"""
HTML email templates.

Every message body is an event-specific fragment wrapped in one shared page
shell (``base_email_template``). The functions here are pure: they take the
validated event payload plus the frontend base URL and return a subject and
an HTML document. User-supplied values are HTML-escaped before they are
interpolated.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from html import escape
from typing import Optional
from urllib.parse import quote

from crkd.storage.models import parse_timestamp

from .events import (
    AdminAlert,
    AssignmentCaseDetails,
    AssignmentDetails,
    BlogPost,
    CaseStatusDetails,
    ContactFormSubmitted,
    OfficerDetails,
)

BRAND_COLOR = "#dc2626"
PANEL_STYLE = "background-color: #f3f4f6; padding: 20px; border-radius: 6px; margin: 20px 0;"


@dataclass(frozen=True)
class RenderedEmail:
    """Subject and HTML body ready to hand to a transport."""
    subject: str
    html: str

    def __post_init__(self):
        # Mail headers cannot carry line breaks
        object.__setattr__(self, "subject", " ".join(self.subject.split()))


def _e(value: Optional[str]) -> str:
    return escape(value or "", quote=True)


def base_email_template(content: str, year: Optional[int] = None) -> str:
    """Wrap an HTML fragment in the shared header, footer and styling."""
    if year is None:
        year = datetime.now(timezone.utc).year
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <style>
    body {{
      font-family: system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif;
      line-height: 1.5;
      color: #1f2937;
      margin: 0;
      padding: 0;
    }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{
      background-color: {BRAND_COLOR};
      color: white;
      padding: 20px;
      text-align: center;
      border-radius: 8px 8px 0 0;
    }}
    .content {{
      background-color: white;
      padding: 30px;
      border: 1px solid #e5e7eb;
      border-radius: 0 0 8px 8px;
    }}
    .button {{
      display: inline-block;
      background-color: {BRAND_COLOR};
      color: white;
      padding: 12px 24px;
      text-decoration: none;
      border-radius: 6px;
      margin-top: 20px;
    }}
    .footer {{ text-align: center; margin-top: 20px; color: #6b7280; font-size: 14px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>Crime Report Kenya</h1>
    </div>
    <div class="content">
      {content}
    </div>
    <div class="footer">
      <p>&copy; {year} Crime Report Kenya. All rights reserved.</p>
    </div>
  </div>
</body>
</html>
"""


def blog_notification(blog: BlogPost, frontend_url: str) -> RenderedEmail:
    content = f"""
      <h2 style="color: {BRAND_COLOR};">New Blog Post Published</h2>
      <h3>{_e(blog.title)}</h3>
      <p>{_e(blog.summary)}...</p>
      <a href="{frontend_url}/blog/{quote(blog.id)}" class="button">Read More</a>
    """
    return RenderedEmail(f"New Blog Post: {blog.title}", base_email_template(content))


def case_update(details: CaseStatusDetails, frontend_url: str,
                updated_on: Optional[date] = None) -> RenderedEmail:
    updated_on = updated_on or datetime.now(timezone.utc).date()
    content = f"""
      <h2 style="color: {BRAND_COLOR};">Case Status Update</h2>
      <div style="{PANEL_STYLE}">
        <p><strong>Case ID:</strong> {_e(details.tracking_id)}</p>
        <p><strong>New Status:</strong> {_e(details.status)}</p>
        <p><strong>Updated on:</strong> {updated_on.isoformat()}</p>
        <p><strong>Notes:</strong> {_e(details.status_notes) or 'No additional notes'}</p>
      </div>
      <a href="{frontend_url}/track-report" class="button">Track Your Case</a>
    """
    return RenderedEmail(f"Case Update: {details.tracking_id}", base_email_template(content))


def officer_assignment(details: AssignmentCaseDetails, officer: OfficerDetails,
                       frontend_url: str) -> RenderedEmail:
    content = f"""
      <h2 style="color: {BRAND_COLOR};">New Case Assignment</h2>
      <p>Officer {_e(officer.name)} ({_e(officer.badge_number)}), you have been assigned a new case.</p>
      <div style="{PANEL_STYLE}">
        <p><strong>Case ID:</strong> {_e(details.tracking_id)}</p>
        <p><strong>Location:</strong> {_e(details.location)}</p>
        <p><strong>Type:</strong> {_e(details.incident_type)}</p>
        <p><strong>Priority:</strong> {_e(details.priority)}</p>
        <p><strong>Description:</strong> {_e(details.description)}</p>
      </div>
      <a href="{frontend_url}/admin" class="button">View Case Details</a>
    """
    return RenderedEmail(f"New Case Assignment: {details.tracking_id}", base_email_template(content))


def ocs_notification(details: AssignmentCaseDetails, officer: OfficerDetails,
                     frontend_url: str) -> RenderedEmail:
    content = f"""
      <h2 style="color: {BRAND_COLOR};">Case Assignment Notification</h2>
      <div style="{PANEL_STYLE}">
        <p><strong>Officer Assigned:</strong> {_e(officer.name)}</p>
        <p><strong>Officer Badge:</strong> {_e(officer.badge_number)}</p>
        <p><strong>Case ID:</strong> {_e(details.tracking_id)}</p>
        <p><strong>Location:</strong> {_e(details.location)}</p>
        <p><strong>Type:</strong> {_e(details.incident_type)}</p>
        <p><strong>Priority:</strong> {_e(details.priority)}</p>
      </div>
      <a href="{frontend_url}/admin" class="button">Review Assignment</a>
    """
    return RenderedEmail(
        f"Case Assignment Notification: {details.tracking_id}", base_email_template(content)
    )


def subscription_confirmation(email: str, frontend_url: str) -> RenderedEmail:
    content = f"""
      <h2 style="color: {BRAND_COLOR};">Thank you for subscribing!</h2>
      <p>You will now receive updates about:</p>
      <ul style="list-style-type: none; padding: 0;">
        <li>&#10003; New blog posts</li>
        <li>&#10003; Safety tips and alerts</li>
        <li>&#10003; Community updates</li>
        <li>&#10003; Important announcements</li>
      </ul>
      <p>Stay informed and help make Kenya safer.</p>
      <a href="{frontend_url}/unsubscribe?email={quote(email, safe='')}" style="color: #6b7280; text-decoration: underline; font-size: 14px;">Unsubscribe</a>
    """
    return RenderedEmail("Welcome to Crime Report Kenya Newsletter", base_email_template(content))


def contact_form_submission(form: ContactFormSubmitted) -> RenderedEmail:
    content = f"""
      <h2 style="color: {BRAND_COLOR};">Contact Form Submission</h2>
      <div style="{PANEL_STYLE}">
        <p><strong>From:</strong> {_e(form.name)}</p>
        <p><strong>Email:</strong> {_e(form.email)}</p>
        <p><strong>Message:</strong></p>
        <p style="white-space: pre-wrap;">{_e(form.message)}</p>
      </div>
      <a href="mailto:{_e(form.email)}" class="button">Reply to Sender</a>
    """
    return RenderedEmail("New Contact Form Submission", base_email_template(content))


def admin_alert(alert: AdminAlert, now: Optional[datetime] = None) -> RenderedEmail:
    now = now or datetime.now(timezone.utc)
    link = f'<a href="{_e(alert.link)}" class="button">View Details</a>' if alert.link else ""
    content = f"""
      <h2 style="color: {BRAND_COLOR};">Important Alert</h2>
      <div style="{PANEL_STYLE}">
        <p><strong>Type:</strong> {_e(alert.alert_type)}</p>
        <p><strong>Message:</strong> {_e(alert.message)}</p>
        <p><strong>Time:</strong> {format_date(now)}</p>
      </div>
      {link}
    """
    return RenderedEmail(f"ALERT: {alert.alert_type}", base_email_template(content))


def format_date(value) -> str:
    """Render a timestamp as e.g. ``Monday, January 1, 2024 at 10:00:00 AM UTC``."""
    try:
        moment = parse_timestamp(value)
    except (TypeError, ValueError):
        return str(value)
    hour = moment.hour % 12 or 12
    return (f"{moment.strftime('%A, %B')} {moment.day}, {moment.year} "
            f"at {hour}:{moment.strftime('%M:%S %p')} UTC")


def _section(label: str, value_html: str, css_class: str = "value") -> str:
    return f"""
            <div class="section">
              <div class="label">{label}:</div>
              <div class="{css_class}">{value_html}</div>
            </div>"""


def assignment_email(details: AssignmentDetails) -> RenderedEmail:
    """
    Standalone officer assignment email.

    Uses its own stricter layout rather than the shared shell; urgent cases
    get an ``[URGENT]`` subject prefix and highlighted status.
    """
    urgent = details.status.lower() == "urgent"
    incident_type = details.incident_type[:1].upper() + details.incident_type[1:]

    sections = [
        _section("Case Status", _e(details.status.upper()), "value urgent" if urgent else "value"),
        _section("Incident Type", _e(incident_type)),
        _section("Location", _e(details.location)),
        _section("County", _e(details.county)),
        _section("Date &amp; Time", f"{_e(details.date)} at {_e(details.time)}"),
        _section("Description", _e(details.description)),
    ]
    if details.evidence_url:
        sections.append(_section(
            "Evidence", f'<a href="{_e(details.evidence_url)}" target="_blank">View Evidence</a>'
        ))
    if details.additional_notes:
        sections.append(_section("Additional Notes", _e(details.additional_notes)))

    assignment = f"<p>Assigned on: {_e(format_date(details.assigned_at))}</p>"
    if details.last_updated:
        assignment += f"\n                <p>Last updated: {_e(format_date(details.last_updated))}</p>"
    sections.append(_section("Assignment Details", assignment))

    html = f"""<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background-color: {BRAND_COLOR}; color: white; padding: 20px; text-align: center; }}
    .content {{ padding: 20px; background-color: #f9fafb; }}
    .section {{ margin-bottom: 20px; }}
    .label {{ font-weight: bold; color: #666; }}
    .value {{ margin-top: 5px; }}
    .footer {{ text-align: center; margin-top: 20px; padding-top: 20px; border-top: 1px solid #ddd; }}
    .urgent {{ color: {BRAND_COLOR}; font-weight: bold; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h2>New Case Assignment</h2>
    </div>
    <div class="content">
      <div class="section">
        <p>You have been assigned to a new case. Please review the details below:</p>
      </div>
{''.join(sections)}
      <div class="footer">
        <p>Please take immediate action on this case.</p>
        <p>This is an automated message. Do not reply to this email.</p>
      </div>
    </div>
  </div>
</body>
</html>
"""
    subject = f"{'[URGENT] ' if urgent else ''}New Case Assignment - Crime Report"
    return RenderedEmail(subject, html)
