import unittest
from unittest.mock import MagicMock

import requests

from lovestory.config import Settings
from lovestory.mailer import (
    REQUEST_TIMEOUT,
    EmailConfigurationError,
    EmailJsClient,
    EmailJsConfig,
    EmailSendError,
)


def _config(**overrides) -> EmailJsConfig:
    values = dict(
        service_id="service_love",
        template_id="template_advance",
        today_template_id="template_today",
        public_key="public",
        private_key="private",
    )
    values.update(overrides)
    return EmailJsConfig(**values)


class EmailJsConfigTests(unittest.TestCase):
    def test_missing_values_are_named(self):
        with self.assertRaises(EmailConfigurationError) as ctx:
            _config(service_id="", private_key="   ")
        message = str(ctx.exception)
        self.assertIn("emailjs_service_id", message)
        self.assertIn("emailjs_private_key", message)
        self.assertNotIn("emailjs_template_id", message)

    def test_from_settings(self):
        settings = Settings(
            emailjs_service_id="svc",
            emailjs_template_id="tpl",
            emailjs_today_template_id="tpl_today",
            emailjs_public_key="pub",
            emailjs_private_key="priv",
        )
        config = EmailJsConfig.from_settings(settings)
        self.assertEqual(config.service_id, "svc")
        self.assertEqual(config.template_for(True), "tpl_today")
        self.assertEqual(config.template_for(False), "tpl")

    def test_from_empty_settings_fails(self):
        with self.assertRaises(EmailConfigurationError):
            EmailJsConfig.from_settings(
                Settings(
                    emailjs_service_id="",
                    emailjs_template_id="",
                    emailjs_today_template_id="",
                    emailjs_public_key="",
                    emailjs_private_key="",
                )
            )


class EmailJsClientTests(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = EmailJsClient(_config(), session=self.session)

    def test_send_posts_payload(self):
        self.session.post.return_value = MagicMock(ok=True, status_code=200)

        self.client.send("template_today", {"email": "alice@example.com"})

        self.session.post.assert_called_once_with(
            "https://api.emailjs.com/api/v1.0/email/send",
            json={
                "service_id": "service_love",
                "template_id": "template_today",
                "user_id": "public",
                "accessToken": "private",
                "template_params": {"email": "alice@example.com"},
            },
            timeout=REQUEST_TIMEOUT,
        )

    def test_rejected_send_raises(self):
        self.session.post.return_value = MagicMock(
            ok=False, status_code=400, text="The template ID is invalid "
        )
        with self.assertRaises(EmailSendError) as ctx:
            self.client.send("template_today", {"email": "alice@example.com"})
        self.assertEqual(
            str(ctx.exception), "EmailJS returned 400: The template ID is invalid"
        )

    def test_network_error_raises(self):
        self.session.post.side_effect = requests.ConnectionError("connection refused")
        with self.assertRaises(EmailSendError):
            self.client.send("template_today", {"email": "alice@example.com"})


if __name__ == "__main__":
    unittest.main()
