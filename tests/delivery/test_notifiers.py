import smtplib
import unittest
from unittest.mock import MagicMock, patch

import requests

from config import NotifierConfig
from review_triage.delivery.email_sender import EmailNotifier, render_alert, render_alert_text
from review_triage.delivery.notifier import CompositeNotifier, LogNotifier, Notifier, summarize
from review_triage.delivery.slack_notifier import SlackNotifier, _emoji
from review_triage.errors import NotificationError
from review_triage.models import AnalysisResult, Department, Entity, IntentCategory, Review

DEPARTMENT = Department(
    id="engineering", name="Engineering", contact="eng@example.com", categories=("bug_report",)
)
REVIEW = Review(
    id="trustpilot-9",
    source="trustpilot",
    source_id="9",
    content="Constant crashes and terrible DHCP support",
    title="Crashes",
    author="Jane",
    rating=1.0,
    url="https://www.trustpilot.com/reviews/acme#9",
)
ANALYSIS = AnalysisResult(
    review_id="trustpilot-9",
    sentiment_score=-1.0,
    intent_category=IntentCategory.BUG_REPORT,
    confidence=0.3,
    is_negative=True,
    is_relevant=True,
    keywords=("crash", "support", "dhcp"),
    entities=(Entity(text="dhcp", type="PRODUCT", offset=29),),
)

SMTP_CONFIG = NotifierConfig(
    smtp_host="smtp.example.com",
    smtp_port=587,
    smtp_user="bot@example.com",
    smtp_pass="secret",
    email_to="fallback@example.com",
)


class TestEmailNotifier(unittest.TestCase):

    def test_render_contains_review_and_analysis(self):
        html = render_alert(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertIn("Engineering: new bug report", html)
        self.assertIn("Constant crashes", html)
        self.assertIn("-1.00", html)
        self.assertIn("crash, support, dhcp", html)
        self.assertIn(REVIEW.url, html)

        text = render_alert_text(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertIn("Department: Engineering", text)
        self.assertIn("Link: https://www.trustpilot.com", text)

    @patch("review_triage.delivery.email_sender.smtplib.SMTP")
    def test_sends_to_department_contact(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value

        EmailNotifier(SMTP_CONFIG).notify(DEPARTMENT, REVIEW, ANALYSIS)

        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "secret")
        from_addr, recipients, body = server.sendmail.call_args.args
        self.assertEqual(from_addr, "bot@example.com")
        self.assertEqual(recipients, ["eng@example.com"])
        self.assertIn("[Engineering] bug_report: Crashes", body)

    @patch("review_triage.delivery.email_sender.smtplib.SMTP")
    def test_recipient_override_and_fallback(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        config = NotifierConfig(**{**SMTP_CONFIG.__dict__, "department_emails": {"engineering": "a@x.com, b@x.com"}})

        EmailNotifier(config).notify(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertEqual(server.sendmail.call_args.args[1], ["a@x.com", "b@x.com"])

        slack_only = Department(id="design", name="Design", contact="#design")
        EmailNotifier(SMTP_CONFIG).notify(slack_only, REVIEW, ANALYSIS)
        self.assertEqual(server.sendmail.call_args.args[1], ["fallback@example.com"])

    @patch("review_triage.delivery.email_sender.smtplib.SMTP")
    def test_smtp_failure_raises_transport_error(self, mock_smtp):
        mock_smtp.return_value.__enter__.return_value.login.side_effect = smtplib.SMTPAuthenticationError(
            535, b"bad credentials"
        )
        with self.assertRaises(NotificationError) as ctx:
            EmailNotifier(SMTP_CONFIG).notify(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertEqual(ctx.exception.category, "transport")
        self.assertEqual(ctx.exception.channel, "email")

    def test_unconfigured_raises_config_error(self):
        notifier = EmailNotifier(NotifierConfig())
        self.assertFalse(notifier.is_configured())
        with self.assertRaises(NotificationError) as ctx:
            notifier.notify(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertEqual(ctx.exception.category, "config")


class TestSlackNotifier(unittest.TestCase):

    def _notifier(self, session, **overrides):
        config = NotifierConfig(slack_webhook_url="https://hooks.slack.com/services/T/B/X", **overrides)
        return SlackNotifier(config, session=session)

    def test_posts_blocks_to_webhook(self):
        session = MagicMock()
        self._notifier(session, slack_channels={"engineering": "#eng-alerts"}).notify(DEPARTMENT, REVIEW, ANALYSIS)

        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        self.assertEqual(url, "https://hooks.slack.com/services/T/B/X")
        self.assertEqual(payload["channel"], "#eng-alerts")
        self.assertIn(":red_circle:", payload["blocks"][0]["text"]["text"])
        self.assertIn("rating 1/5", payload["blocks"][2]["elements"][0]["text"])
        self.assertIn("View original", payload["blocks"][3]["elements"][0]["text"])
        session.post.return_value.raise_for_status.assert_called_once()

    def test_http_error_is_rejected(self):
        session = MagicMock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("400 invalid_payload")
        with self.assertRaises(NotificationError) as ctx:
            self._notifier(session).notify(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertEqual(ctx.exception.category, "rejected")

    def test_connection_error_is_transport(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("dns failure")
        with self.assertRaises(NotificationError) as ctx:
            self._notifier(session).notify(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertEqual(ctx.exception.category, "transport")

    def test_emoji_thresholds(self):
        self.assertEqual(_emoji(-0.9), ":red_circle:")
        self.assertEqual(_emoji(-0.3), ":orange_circle:")
        self.assertEqual(_emoji(0.0), ":yellow_circle:")
        self.assertEqual(_emoji(0.9), ":white_circle:")


class _Failing(Notifier):
    channel = "failing"

    def notify(self, department, review, analysis):
        raise NotificationError(self.channel, "transport", "down")


class TestCompositeNotifier(unittest.TestCase):

    def test_one_failing_channel_does_not_stop_others(self):
        ok = MagicMock(spec=Notifier)
        ok.is_configured.return_value = True
        composite = CompositeNotifier([_Failing(), ok])

        with self.assertRaises(NotificationError) as ctx:
            composite.notify(DEPARTMENT, REVIEW, ANALYSIS)

        ok.notify.assert_called_once_with(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertEqual(ctx.exception.category, "transport")
        self.assertIn("down", str(ctx.exception))

    def test_unconfigured_channels_are_dropped(self):
        composite = CompositeNotifier([EmailNotifier(NotifierConfig()), SlackNotifier(NotifierConfig())])
        self.assertFalse(composite.is_configured())

    def test_log_notifier_writes_summary(self):
        with self.assertLogs("review_triage.delivery.notifier", level="INFO") as logs:
            LogNotifier().notify(DEPARTMENT, REVIEW, ANALYSIS)
        self.assertIn("engineering", logs.output[0])
        self.assertIn(summarize(REVIEW, ANALYSIS), logs.output[0])


if __name__ == "__main__":
    unittest.main()
