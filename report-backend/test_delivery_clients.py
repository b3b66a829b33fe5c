"""
Tests for the email and scheduler clients and the cron helper.
HTTP is mocked at request_json(); no network access.
"""

import base64
import unittest
from datetime import date
from unittest.mock import AsyncMock

from email_client import EmailClient, csv_attachment, is_valid_email
from errors import ConfigurationError, EmailDeliveryError, SchedulerError, ValidationError
from http_client import UpstreamHTTPError
from scheduler_client import SCHEDULE_DEDUPLICATION_KEY, SchedulerClient, build_daily_cron, parse_daily_cron


class TestEmailHelpers(unittest.TestCase):

    def test_valid_emails(self):
        self.assertTrue(is_valid_email("ann@example.com"))
        self.assertFalse(is_valid_email("ann@example"))
        self.assertFalse(is_valid_email("ann @example.com"))
        self.assertFalse(is_valid_email(None))

    def test_attachment_is_base64(self):
        attachment = csv_attachment("r.csv", "a,b\n")
        self.assertEqual(attachment["filename"], "r.csv")
        self.assertEqual(base64.b64decode(attachment["content"]).decode("utf-8"), "a,b\n")


class TestEmailClient(unittest.IsolatedAsyncioTestCase):

    def _client(self, api_key="re_key", sender="reports@example.com"):
        client = EmailClient(api_key=api_key, from_email=sender, base_url="https://email.test")
        client.request_json = AsyncMock()
        return client

    async def test_send_returns_id(self):
        client = self._client()
        client.request_json.return_value = (200, "OK", {"id": "email_123"})
        email_id = await client.send("ann@example.com", "Subject", "<p>hi</p>", [csv_attachment("r.csv", "x")])
        self.assertEqual(email_id, "email_123")

        args = client.request_json.await_args
        self.assertEqual(args.args[:2], ("POST", "/emails"))
        self.assertEqual(args.kwargs["headers"]["Authorization"], "Bearer re_key")
        body = args.kwargs["json_body"]
        self.assertEqual(body["from"], "reports@example.com")
        self.assertEqual(body["to"], "ann@example.com")
        self.assertEqual(body["attachments"][0]["filename"], "r.csv")

    async def test_rejected_message(self):
        client = self._client()
        client.request_json.return_value = (422, "Unprocessable Entity", {"message": "Invalid `to` field"})
        with self.assertRaises(EmailDeliveryError) as ctx:
            await client.send("ann@example.com", "s", "h")
        self.assertEqual(ctx.exception.details, "Invalid `to` field")

    async def test_transport_failure(self):
        client = self._client()
        client.request_json.side_effect = UpstreamHTTPError("connection refused")
        with self.assertRaises(EmailDeliveryError):
            await client.send("ann@example.com", "s", "h")

    async def test_not_configured(self):
        with self.assertRaises(ConfigurationError) as ctx:
            await self._client(api_key=None).send("ann@example.com", "s", "h")
        self.assertEqual(ctx.exception.message, "Email service not configured")
        with self.assertRaises(ConfigurationError) as ctx:
            await self._client(sender=None).send("ann@example.com", "s", "h")
        self.assertEqual(ctx.exception.message, "Sender email not configured")


class TestBuildDailyCron(unittest.TestCase):

    def test_new_york_summer(self):
        cron, description = build_daily_cron(9, 0, "America/New_York", on_date=date(2024, 7, 1))
        self.assertEqual(cron, "0 13 * * *")
        self.assertEqual(description, "Every day at 09:00 Eastern Time (ET)")

    def test_new_york_winter(self):
        cron, _ = build_daily_cron(9, 30, "America/New_York", on_date=date(2024, 1, 15))
        self.assertEqual(cron, "30 14 * * *")

    def test_wraps_past_midnight(self):
        cron, _ = build_daily_cron(22, 15, "America/Los_Angeles", on_date=date(2024, 7, 1))
        self.assertEqual(cron, "15 5 * * *")

    def test_unlabelled_timezone(self):
        _, description = build_daily_cron(8, 5, "UTC", on_date=date(2024, 7, 1))
        self.assertEqual(description, "Every day at 08:05 UTC")

    def test_invalid_input(self):
        with self.assertRaises(ValidationError):
            build_daily_cron(24, 0)
        with self.assertRaises(ValidationError):
            build_daily_cron(9, 0, "Mars/Olympus_Mons")

    def test_parse(self):
        self.assertEqual(parse_daily_cron("15 5 * * *"), (15, 5))
        self.assertEqual(parse_daily_cron("garbage"), (0, 9))


class TestSchedulerClient(unittest.IsolatedAsyncioTestCase):

    def _client(self, secret="tr_key"):
        client = SchedulerClient(secret_key=secret, base_url="https://scheduler.test", task_id="daily-event-report")
        client.request_json = AsyncMock()
        return client

    async def test_create_schedule(self):
        client = self._client()
        client.request_json.return_value = (200, "OK", {"id": "sched_1"})
        schedule = await client.create_schedule("0 13 * * *")
        self.assertEqual(schedule["id"], "sched_1")

        args = client.request_json.await_args
        self.assertEqual(args.args[:2], ("POST", "/api/v1/schedules"))
        self.assertEqual(
            args.kwargs["json_body"],
            {
                "task": "daily-event-report",
                "cron": "0 13 * * *",
                "timezone": "America/New_York",
                "deduplicationKey": SCHEDULE_DEDUPLICATION_KEY,
                "externalId": SCHEDULE_DEDUPLICATION_KEY,
            },
        )

    async def test_delete_schedule(self):
        client = self._client()
        client.request_json.return_value = (204, "No Content", None)
        await client.delete_schedule()
        self.assertEqual(
            client.request_json.await_args.args[:2],
            ("DELETE", f"/api/v1/schedules/{SCHEDULE_DEDUPLICATION_KEY}"),
        )

    async def test_error_status(self):
        client = self._client()
        client.request_json.return_value = (404, "Not Found", None)
        with self.assertRaises(SchedulerError):
            await client.delete_schedule()

    async def test_missing_secret(self):
        with self.assertRaises(ConfigurationError):
            await self._client(secret=None).create_schedule("0 13 * * *")


if __name__ == "__main__":
    unittest.main()
