"""
Tests for the payment gateway client. HTTP is mocked at request_json();
no network access.
"""

import unittest
from unittest.mock import AsyncMock

from errors import ConfigurationError
from gateway_client import (
    API_KEY_NOT_CONFIGURED,
    INVALID_TRANSACTION_FORMAT,
    NO_TRANSACTION_ID,
    ZIP_NOT_FOUND,
    PaymentGatewayClient,
    extract_zip,
)
from http_client import UpstreamHTTPError


def _zip_payload(zip_code):
    return {"response": {"data": [{"zip": zip_code}]}}


def _client(api_key="secret"):
    client = PaymentGatewayClient(api_key=api_key, base_url="https://gateway.test", delay_seconds=0)
    client.request_json = AsyncMock()
    return client


class TestExtractZip(unittest.TestCase):

    def test_present(self):
        self.assertEqual(extract_zip(_zip_payload("10001")), "10001")

    def test_missing_steps(self):
        self.assertIsNone(extract_zip({}))
        self.assertIsNone(extract_zip({"response": {"data": []}}))
        self.assertIsNone(extract_zip(None))
        self.assertIsNone(extract_zip(_zip_payload("")))


class TestLookupZip(unittest.IsolatedAsyncioTestCase):

    async def test_success(self):
        client = _client()
        client.request_json.return_value = (200, "OK", _zip_payload("94107"))
        self.assertEqual(await client.lookup_zip("t1_txn_abc"), "94107")
        method, path = client.request_json.await_args.args[:2]
        self.assertEqual((method, path), ("GET", "/txns/t1_txn_abc"))
        self.assertEqual(client.request_json.await_args.kwargs["headers"]["APIKEY"], "secret")

    async def test_missing_id(self):
        client = _client()
        self.assertEqual(await client.lookup_zip(None), NO_TRANSACTION_ID)
        client.request_json.assert_not_awaited()

    async def test_invalid_prefix_makes_no_call(self):
        client = _client()
        self.assertEqual(await client.lookup_zip("txn_123"), INVALID_TRANSACTION_FORMAT)
        client.request_json.assert_not_awaited()

    async def test_missing_key(self):
        client = _client(api_key=None)
        self.assertEqual(await client.lookup_zip("t1_txn_abc"), API_KEY_NOT_CONFIGURED)
        client.request_json.assert_not_awaited()

    async def test_http_error_status(self):
        client = _client()
        client.request_json.return_value = (404, "Not Found", None)
        self.assertEqual(await client.lookup_zip("t1_txn_abc"), "API error: 404")

    async def test_transport_error(self):
        client = _client()
        client.request_json.side_effect = UpstreamHTTPError("timed out")
        self.assertEqual(await client.lookup_zip("t1_txn_abc"), "API error: timed out")

    async def test_zip_not_found(self):
        client = _client()
        client.request_json.return_value = (200, "OK", {"response": {"data": []}})
        self.assertEqual(await client.lookup_zip("t1_txn_abc"), ZIP_NOT_FOUND)


class TestFetchZips(unittest.IsolatedAsyncioTestCase):

    async def test_batch_never_aborts(self):
        client = _client()
        client.pause = AsyncMock()
        client.request_json.side_effect = [
            (200, "OK", _zip_payload("10001")),
            (500, "Internal Server Error", None),
            UpstreamHTTPError("connection reset"),
            (200, "OK", {"response": {"data": [{}]}}),
        ]
        ids = ["t1_txn_1", "bogus", "t1_txn_2", "t1_txn_3", "t1_txn_4"]
        batch = await client.fetch_zips(ids)

        self.assertEqual([r["transactionId"] for r in batch.results], ["t1_txn_1", "t1_txn_4"])
        self.assertEqual(batch.results[0]["zipCode"], "10001")
        self.assertEqual(batch.results[1]["zipCode"], "Not found")
        self.assertIn("fullResponse", batch.results[0])
        self.assertEqual(
            batch.errors,
            [
                {"transactionId": "bogus", "error": INVALID_TRANSACTION_FORMAT},
                {"transactionId": "t1_txn_2", "error": "HTTP 500: Internal Server Error"},
                {"transactionId": "t1_txn_3", "error": "connection reset"},
            ],
        )
        self.assertEqual(batch.summary(len(ids)), {"total": 5, "successful": 2, "failed": 3})
        # Four HTTP calls, a pause between each pair
        self.assertEqual(client.request_json.await_count, 4)
        self.assertEqual(client.pause.await_count, 3)

    async def test_missing_key_raises(self):
        client = _client(api_key=None)
        with self.assertRaises(ConfigurationError):
            await client.fetch_zips(["t1_txn_1"])


if __name__ == "__main__":
    unittest.main()
