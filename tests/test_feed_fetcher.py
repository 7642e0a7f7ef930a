import threading
import unittest

import requests

from gbfs_explorer.cache import TTLCache
from gbfs_explorer.data_sources.feed_fetcher import FeedFetcher, is_json_content_type
from gbfs_explorer.domain import FeedRequest
from gbfs_explorer.errors import ContentTypeError, FeedTimeoutError, NetworkError, ParseError, UpstreamError

JSON = {"Content-Type": "application/json; charset=utf-8"}


class DummyResp:
    def __init__(self, status_code=200, payload=None, text="", headers=None, raise_json=False):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers if headers is not None else dict(JSON)
        self._raise_json = raise_json

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._raise_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class RoutingSession:
    """Answer GETs from a url -> response/exception/callable table."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None, allow_redirects=True):
        with self._lock:
            self.calls.append(url)
        route = self.routes[url]
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route()
        return route


class TestContentType(unittest.TestCase):
    def test_json_types(self):
        self.assertTrue(is_json_content_type("application/json"))
        self.assertTrue(is_json_content_type("application/json; charset=utf-8"))
        self.assertTrue(is_json_content_type("application/vnd.api+json"))
        self.assertTrue(is_json_content_type("Application/Geo+JSON"))

    def test_non_json_types(self):
        self.assertFalse(is_json_content_type("text/html"))
        self.assertFalse(is_json_content_type(""))
        self.assertFalse(is_json_content_type(None))


class TestFetchMany(unittest.TestCase):
    def _fetcher(self, session, timeout=10.0):
        return FeedFetcher(session=session, timeout=timeout, cache=TTLCache(60, clock=lambda: 0.0))

    def test_hanging_item_only_marks_that_item(self):
        release = threading.Event()

        def hang():
            release.wait(5)
            return DummyResp(payload={"late": True})

        session = RoutingSession({
            "https://a/gbfs.json": DummyResp(payload={"a": 1}),
            "https://b/gbfs.json": hang,
            "https://c/gbfs.json": DummyResp(payload={"c": 3}),
        })
        items = [
            FeedRequest(name="a", url="https://a/gbfs.json"),
            FeedRequest(name="b", url="https://b/gbfs.json"),
            FeedRequest(name="c", url="https://c/gbfs.json"),
        ]
        try:
            results = self._fetcher(session, timeout=0.3).fetch_many(items)
        finally:
            release.set()

        self.assertEqual([r.name for r in results], ["a", "b", "c"])
        self.assertEqual(results[0].data, {"a": 1})
        self.assertIsNone(results[0].error)
        self.assertIsNone(results[1].data)
        self.assertIn("timed out after 0.3 seconds", results[1].error)
        self.assertEqual(results[2].data, {"c": 3})

    def test_http_error_carries_status_and_truncated_excerpt(self):
        session = RoutingSession({"https://a/x.json": DummyResp(status_code=404, text="x" * 500)})
        [result] = self._fetcher(session).fetch_many([FeedRequest(name="a", url="https://a/x.json")])
        self.assertIsNone(result.data)
        self.assertEqual(result.error, "HTTP 404: " + "x" * 200)

    def test_non_json_content_type_is_item_error(self):
        session = RoutingSession({
            "https://a/x.json": DummyResp(text="<html>", headers={"Content-Type": "text/html"}),
        })
        [result] = self._fetcher(session).fetch_many([FeedRequest(name="a", url="https://a/x.json")])
        self.assertIn("Unexpected Content-Type", result.error)

    def test_invalid_json_is_item_error(self):
        session = RoutingSession({"https://a/x.json": DummyResp(raise_json=True)})
        [result] = self._fetcher(session).fetch_many([FeedRequest(name="a", url="https://a/x.json")])
        self.assertIn("Invalid JSON", result.error)

    def test_socket_timeout_is_item_error(self):
        session = RoutingSession({"https://a/x.json": requests.exceptions.ReadTimeout("slow")})
        [result] = self._fetcher(session).fetch_many([FeedRequest(name="a", url="https://a/x.json")])
        self.assertEqual(result.error, "Request to https://a/x.json timed out after 10 seconds")

    def test_unexpected_exception_is_item_error(self):
        def explode():
            raise RuntimeError("kaboom")

        session = RoutingSession({"https://a/x.json": explode, "https://b/x.json": DummyResp(payload=[])})
        results = self._fetcher(session).fetch_many([
            FeedRequest(name="a", url="https://a/x.json"),
            FeedRequest(name="b", url="https://b/x.json"),
        ])
        self.assertIn("kaboom", results[0].error)
        self.assertEqual(results[1].data, [])

    def test_accepts_plain_dict_items(self):
        session = RoutingSession({"https://a/x.json": DummyResp(payload={"ok": True})})
        [result] = self._fetcher(session).fetch_many([{"name": "a", "url": "https://a/x.json"}])
        self.assertEqual(result.data, {"ok": True})

    def test_empty_batch(self):
        self.assertEqual(self._fetcher(RoutingSession({})).fetch_many([]), [])

    def test_cache_hit_returns_previous_results_including_errors(self):
        session = RoutingSession({
            "https://a/x.json": DummyResp(payload={"a": 1}),
            "https://b/x.json": DummyResp(status_code=500, text="down"),
        })
        fetcher = self._fetcher(session)
        items = [FeedRequest(name="a", url="https://a/x.json"), FeedRequest(name="b", url="https://b/x.json")]
        first = fetcher.fetch_many(items)

        session.routes["https://b/x.json"] = DummyResp(payload={"b": 2})
        second = fetcher.fetch_many(list(reversed(items)))

        self.assertEqual(len(session.calls), 2)
        self.assertEqual([r.name for r in second], ["b", "a"])
        self.assertEqual(second[0].error, first[1].error)
        self.assertEqual(second[1].data, {"a": 1})

    def test_cache_hit_keeps_repeated_names_apart(self):
        session = RoutingSession({
            "https://u1/gbfs.json": DummyResp(payload={"which": 1}),
            "https://u2/gbfs.json": DummyResp(payload={"which": 2}),
        })
        fetcher = self._fetcher(session)
        items = [
            FeedRequest(name="gbfs", url="https://u1/gbfs.json"),
            FeedRequest(name="gbfs", url="https://u2/gbfs.json"),
        ]
        first = fetcher.fetch_many(items)
        second = fetcher.fetch_many(items)

        self.assertEqual([r.data for r in first], [{"which": 1}, {"which": 2}])
        self.assertEqual([r.data for r in second], [{"which": 1}, {"which": 2}])
        self.assertEqual([r.data for r in fetcher.fetch_many(list(reversed(items)))], [{"which": 2}, {"which": 1}])
        self.assertEqual(len(session.calls), 2)

    def test_item_errors_mask_url_secrets(self):
        url = "https://a/x.json?key=secret123&lang=en"
        session = RoutingSession({
            url: requests.exceptions.ReadTimeout("slow"),
            "https://b/x.json?token=secret123": requests.exceptions.ConnectionError(
                "Max retries exceeded with url: /x.json?token=secret123"
            ),
        })
        results = self._fetcher(session).fetch_many([
            FeedRequest(name="a", url=url),
            FeedRequest(name="b", url="https://b/x.json?token=secret123"),
        ])
        self.assertEqual(results[0].error, "Request to https://a/x.json?key=%2A%2A%2A&lang=en timed out after 10 seconds")
        self.assertIn("token=%2A%2A%2A", results[1].error)
        for result in results:
            self.assertNotIn("secret123", result.error)

    def test_cache_expires(self):
        now = [0.0]
        session = RoutingSession({"https://a/x.json": DummyResp(payload={"a": 1})})
        fetcher = FeedFetcher(session=session, cache=TTLCache(60, clock=lambda: now[0]))
        items = [FeedRequest(name="a", url="https://a/x.json")]
        fetcher.fetch_many(items)
        now[0] = 61.0
        fetcher.fetch_many(items)
        self.assertEqual(len(session.calls), 2)


class TestFetchSingle(unittest.TestCase):
    def _fetcher(self, routes):
        return FeedFetcher(session=RoutingSession(routes), single_timeout=7.0)

    def test_returns_decoded_json(self):
        fetcher = self._fetcher({"https://a/x.json": DummyResp(payload={"ok": 1})})
        self.assertEqual(fetcher.fetch_single("https://a/x.json"), {"ok": 1})

    def test_upstream_status_is_passed_through(self):
        fetcher = self._fetcher({"https://a/x.json": DummyResp(status_code=503, text="maintenance")})
        with self.assertRaises(UpstreamError) as ctx:
            fetcher.fetch_single("https://a/x.json")
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(str(ctx.exception), "Provider error: 503 - maintenance")

    def test_timeout_maps_to_408(self):
        fetcher = self._fetcher({"https://a/x.json": requests.exceptions.ConnectTimeout("slow")})
        with self.assertRaises(FeedTimeoutError) as ctx:
            fetcher.fetch_single("https://a/x.json")
        self.assertEqual(ctx.exception.status_code, 408)
        self.assertIn("7 seconds", str(ctx.exception))

    def test_network_failure_maps_to_502(self):
        fetcher = self._fetcher({"https://a/x.json": requests.exceptions.ConnectionError("refused")})
        with self.assertRaises(NetworkError) as ctx:
            fetcher.fetch_single("https://a/x.json")
        self.assertEqual(ctx.exception.status_code, 502)

    def test_errors_do_not_echo_url_secrets(self):
        fetcher = self._fetcher({
            "https://a/x.json?apikey=hunter2": DummyResp(text="<html>", headers={"Content-Type": "text/html"}),
            "https://b/x.json?apikey=hunter2": DummyResp(raise_json=True),
        })
        with self.assertRaises(ContentTypeError) as ctx:
            fetcher.fetch_single("https://a/x.json?apikey=hunter2")
        self.assertNotIn("hunter2", str(ctx.exception))
        with self.assertRaises(ParseError) as ctx:
            fetcher.fetch_single("https://b/x.json?apikey=hunter2")
        self.assertNotIn("hunter2", str(ctx.exception))

    def test_content_type_and_parse_failures(self):
        fetcher = self._fetcher({
            "https://a/x.json": DummyResp(text="<html>", headers={"Content-Type": "text/html"}),
            "https://b/x.json": DummyResp(raise_json=True),
        })
        with self.assertRaises(ContentTypeError):
            fetcher.fetch_single("https://a/x.json")
        with self.assertRaises(ParseError):
            fetcher.fetch_single("https://b/x.json")


if __name__ == "__main__":
    unittest.main()
