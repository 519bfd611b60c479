from __future__ import annotations

import random
import unittest
from unittest.mock import Mock

import requests

from stock_watch.http_client import HttpClient


def _resp(status_code: int, text: str = "", url: str = "https://example.test/", headers: dict | None = None) -> Mock:
    resp = Mock()
    resp.status_code = status_code
    resp.url = url
    resp.text = text
    resp.headers = headers or {}
    return resp


class TestHttpClientRetries(unittest.TestCase):
    def _client(self, **kwargs) -> tuple[HttpClient, Mock]:
        sleep = Mock()
        client = HttpClient(timeout_seconds=1.0, rng=random.Random(0), sleep=sleep, **kwargs)
        return client, sleep

    def test_retries_on_transient_5xx(self) -> None:
        client, _sleep = self._client(max_retries=3)
        client._session().get = Mock(side_effect=[_resp(502, "bad gateway"), _resp(200, "<html>ok</html>")])

        res = client.fetch_text("https://example.test/")

        self.assertTrue(res.ok)
        self.assertEqual(client._session().get.call_count, 2)
        self.assertEqual(res.text, "<html>ok</html>")
        self.assertEqual(res.status_code, 200)
        self.assertIsNone(res.error)

    def test_does_not_retry_on_404_and_keeps_body(self) -> None:
        client, _sleep = self._client(max_retries=3)
        client._session().get = Mock(return_value=_resp(404, "not found", url="https://example.test/missing"))

        res = client.fetch_text("https://example.test/missing")

        self.assertFalse(res.ok)
        self.assertEqual(client._session().get.call_count, 1)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.error, "HTTP 404")
        self.assertEqual(res.text, "not found")
        self.assertIsNone(res.error_kind)

    def test_does_not_retry_on_429(self) -> None:
        client, _sleep = self._client(max_retries=3)
        client._session().get = Mock(return_value=_resp(429, "slow down"))

        res = client.fetch_text("https://example.test/")

        self.assertEqual(client._session().get.call_count, 1)
        self.assertEqual(res.status_code, 429)
        self.assertFalse(res.ok)

    def test_timeout_is_not_retried(self) -> None:
        client, sleep = self._client(max_retries=3)
        client._session().get = Mock(side_effect=requests.Timeout("read timed out"))

        res = client.fetch_text("https://example.test/")

        self.assertFalse(res.ok)
        self.assertIsNone(res.status_code)
        self.assertIsNone(res.text)
        self.assertEqual(res.error_kind, "network_error")
        self.assertIn("Timeout after 1s", res.error or "")
        self.assertEqual(client._session().get.call_count, 1)
        # Only the pre-request pacing delay, no backoff.
        self.assertEqual(sleep.call_count, 1)

    def test_connection_error_is_retried(self) -> None:
        client, _sleep = self._client(max_retries=3)
        client._session().get = Mock(side_effect=[requests.ConnectionError("reset"), _resp(200, "<html>ok</html>")])

        res = client.fetch_text("https://example.test/")

        self.assertTrue(res.ok)
        self.assertEqual(client._session().get.call_count, 2)

    def test_connection_error_becomes_network_error(self) -> None:
        client, _sleep = self._client(max_retries=1)
        client._session().get = Mock(side_effect=requests.ConnectionError("refused"))

        res = client.fetch_text("https://example.test/")

        self.assertEqual(res.error_kind, "network_error")
        self.assertIn("ConnectionError", res.error or "")

    def test_request_uses_built_identity_and_pacing(self) -> None:
        client, sleep = self._client(max_retries=1, proxy_url="http://proxy.test:8080")
        client._session().get = Mock(return_value=_resp(200, "<html></html>"))

        client.fetch_text("https://example.test/p", user_agent="MyWatcher/1.0")

        kwargs = client._session().get.call_args.kwargs
        self.assertEqual(kwargs["headers"]["User-Agent"], "MyWatcher/1.0")
        self.assertEqual(kwargs["proxies"], {"http": "http://proxy.test:8080", "https": "http://proxy.test:8080"})
        self.assertEqual(kwargs["timeout"], (1.0, 1.0))
        # Pre-request delay drawn from [1, 3] seconds.
        self.assertEqual(sleep.call_count, 1)
        delay = sleep.call_args.args[0]
        self.assertGreaterEqual(delay, 1.0)
        self.assertLessEqual(delay, 3.0)

    def test_unpaced_fetch_does_not_sleep(self) -> None:
        client, sleep = self._client(max_retries=1)
        client._session().get = Mock(return_value=_resp(200, "<html></html>"))

        client.fetch_text("https://example.test/p", paced=False)

        sleep.assert_not_called()


if __name__ == "__main__":
    unittest.main()
