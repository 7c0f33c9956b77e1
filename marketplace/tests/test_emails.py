from django.conf import settings
from django.core import mail
from django.test import SimpleTestCase, override_settings

from marketplace.emails import EmailSender


@override_settings(EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend", SITE_URL="https://tradeboard.test/")
class EmailSenderTests(SimpleTestCase):
    def test_final_payment_request_links_to_the_job(self):
        self.assertTrue(EmailSender("jobs@tradeboard.test").send_final_payment_request("sam@example.com", 12, "Sam"))

        message = mail.outbox[0]
        self.assertEqual(message.to, ["sam@example.com"])
        self.assertEqual(message.from_email, "jobs@tradeboard.test")
        self.assertIn("Hi Sam,", message.body)
        self.assertIn("https://tradeboard.test/jobs/12", message.body)

    def test_missing_address_sends_nothing(self):
        self.assertFalse(EmailSender().send_new_quote("", 12, 3))
        self.assertEqual(mail.outbox, [])


class EmailTransportTests(SimpleTestCase):
    def test_smtp_connections_carry_a_timeout(self):
        connection = mail.get_connection("django.core.mail.backends.smtp.EmailBackend")
        self.assertEqual(connection.timeout, settings.EMAIL_TIMEOUT)
        self.assertGreater(connection.timeout, 0)
