"""
邮件通知模块 (Email Notification Module)
Sends one HTML + plain-text alert per routed review over SMTP.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from jinja2 import Template

from config import NotifierConfig
from review_triage.delivery.notifier import Notifier, summarize
from review_triage.errors import NotificationError
from review_triage.models import AnalysisResult, Department, Review

logger = logging.getLogger(__name__)

EMAIL_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, Segoe UI, Helvetica, Arial, sans-serif; color: #1f2933;">
  <h2 style="margin-bottom: 4px;">{{ department.name }}: new {{ analysis.intent_category.value | replace('_', ' ') }}</h2>
  <p style="color: #616e7c; margin-top: 0;">
    {{ review.source }}{% if review.author %} · {{ review.author }}{% endif %}
    {% if review.rating is not none %} · rating {{ '%g' % review.rating }}/5{% endif %}
  </p>
  {% if review.title %}<h3>{{ review.title }}</h3>{% endif %}
  <blockquote style="border-left: 4px solid #e12d39; margin: 0; padding: 8px 16px; background: #fff5f5;">
    {{ review.content }}
  </blockquote>
  <table style="margin-top: 16px; border-collapse: collapse;">
    <tr><td style="padding-right: 12px;">Sentiment</td><td>{{ '%+.2f' % analysis.sentiment_score }}</td></tr>
    <tr><td style="padding-right: 12px;">Confidence</td><td>{{ '%.2f' % analysis.confidence }}</td></tr>
    {% if analysis.keywords %}
    <tr><td style="padding-right: 12px;">Keywords</td><td>{{ analysis.keywords | join(', ') }}</td></tr>
    {% endif %}
    {% if analysis.entities %}
    <tr><td style="padding-right: 12px;">Entities</td><td>{{ analysis.entities | map(attribute='text') | join(', ') }}</td></tr>
    {% endif %}
  </table>
  {% if review.url %}<p><a href="{{ review.url }}">View original</a></p>{% endif %}
</body>
</html>
"""
)


def render_alert(department: Department, review: Review, analysis: AnalysisResult) -> str:
    return EMAIL_TEMPLATE.render(department=department, review=review, analysis=analysis)


def render_alert_text(department: Department, review: Review, analysis: AnalysisResult) -> str:
    lines = [
        f"Department: {department.name}",
        summarize(review, analysis, limit=2000),
    ]
    if analysis.keywords:
        lines.append("Keywords: " + ", ".join(analysis.keywords))
    if review.url:
        lines.append(f"Link: {review.url}")
    return "\n".join(lines)


class EmailNotifier(Notifier):
    channel = "email"

    def __init__(self, config: NotifierConfig):
        self.config = config

    def is_configured(self) -> bool:
        return self.config.email_enabled

    def _recipient(self, department: Department) -> str:
        override = self.config.department_emails.get(department.id)
        if override:
            return override
        if "@" in department.contact:
            return department.contact
        return self.config.email_to

    def notify(self, department: Department, review: Review, analysis: AnalysisResult) -> None:
        """Send the alert via SMTP (发送邮件)."""
        if not self.is_configured():
            raise NotificationError(self.channel, "config", "SMTP not configured")
        recipient = self._recipient(department)
        if not recipient:
            raise NotificationError(self.channel, "config", f"no email address for department {department.id}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[{department.name}] {analysis.intent_category.value}: {review.title or review.id}"[:200]
        msg["From"] = self.config.email_from or self.config.smtp_user
        msg["To"] = recipient
        msg.attach(MIMEText(render_alert_text(department, review, analysis), "plain", "utf-8"))
        msg.attach(MIMEText(render_alert(department, review, analysis), "html", "utf-8"))

        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=30) as server:
                server.starttls()
                server.login(self.config.smtp_user, self.config.smtp_pass)
                recipients = [r.strip() for r in recipient.split(",") if r.strip()]
                server.sendmail(msg["From"], recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(self.channel, "transport", str(exc)) from exc

        logger.info("[EMAIL] Alert for %s sent to %s", review.id, recipient)
