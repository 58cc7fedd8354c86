# test_addon.py

import json
import logging
import threading
import unittest
from urllib.parse import quote

from mitmproxy import http
from mitmproxy.test import tflow

from addon import OriginProxyAddon
from origin_tracker import OriginTracker
from upstream import ProxiedResponse, UpstreamError

logging.disable(logging.CRITICAL)

PROXY = "http://127.0.0.1:3001"


class FakeClient:
    """记录调用参数并返回预设响应的上游客户端"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def fetch(self, url, method="GET", accept=None, body=None, body_type=None):
        self.calls.append({"url": url, "method": method, "accept": accept, "body": body, "body_type": body_type})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def make_flow(method, path, content=b"", headers=None):
    flow = tflow.tflow()
    flow.request = http.Request.make(method, PROXY + path, content, headers or {})
    return flow


def html_response(url, body=b"<html><head></head><body>hi</body></html>"):
    return ProxiedResponse(url=url, status_code=200, content_type="text/html; charset=utf-8", content=body)


class TestExplicitRoute(unittest.TestCase):

    def test_missing_url_is_400(self):
        addon = OriginProxyAddon(OriginTracker(), FakeClient())
        flow = make_flow("GET", "/proxy")
        addon.route(flow)
        self.assertEqual(flow.response.status_code, 400)
        self.assertEqual(json.loads(flow.response.content)["error"], "Missing ?url= parameter")
        self.assertEqual(flow.response.headers["Access-Control-Allow-Origin"], "*")

    def test_invalid_url_is_400(self):
        client = FakeClient()
        addon = OriginProxyAddon(OriginTracker(), client)
        flow = make_flow("GET", "/proxy?url=" + quote("ftp://t.example/x", safe=""))
        addon.route(flow)
        self.assertEqual(flow.response.status_code, 400)
        self.assertEqual(client.calls, [])

    def test_html_sets_target_origin_from_final_url(self):
        tracker = OriginTracker()
        client = FakeClient(html_response("https://www.t.example/home"))
        addon = OriginProxyAddon(tracker, client)
        flow = make_flow("GET", "/proxy?url=" + quote("https://t.example/", safe=""))
        addon.route(flow)

        self.assertEqual(client.calls[0]["url"], "https://t.example/")
        self.assertEqual(tracker.current, "https://www.t.example")
        self.assertEqual(flow.response.status_code, 200)
        self.assertEqual(flow.response.headers["Content-Type"], "text/html; charset=utf-8")
        self.assertIn(b'data-proxy-injected="runtime"', flow.response.content)

    def test_non_html_does_not_touch_target_origin(self):
        tracker = OriginTracker("https://t.example")
        client = FakeClient(ProxiedResponse(url="https://cdn.example/lib.js", status_code=200,
                                            content_type="application/javascript", content=b"x()"))
        addon = OriginProxyAddon(tracker, client)
        addon.route(make_flow("GET", "/proxy?url=" + quote("https://cdn.example/lib.js", safe="")))
        self.assertEqual(tracker.current, "https://t.example")

    def test_upstream_failure_is_502_with_detail(self):
        tracker = OriginTracker()
        client = FakeClient(UpstreamError("https://down.example/", "connection refused"))
        addon = OriginProxyAddon(tracker, client)
        flow = make_flow("GET", "/proxy?url=" + quote("https://down.example/", safe=""))
        addon.route(flow)

        self.assertEqual(flow.response.status_code, 502)
        payload = json.loads(flow.response.content)
        self.assertEqual(payload["url"], "https://down.example/")
        self.assertEqual(payload["details"], "connection refused")
        self.assertEqual(tracker.current, "")


class TestCatchAllRoute(unittest.TestCase):

    def test_before_any_html_is_404(self):
        client = FakeClient()
        addon = OriginProxyAddon(OriginTracker(), client)
        flow = make_flow("GET", "/a/b?c=1")
        addon.route(flow)
        self.assertEqual(flow.response.status_code, 404)
        self.assertIn("No target origin set", json.loads(flow.response.content)["error"])
        self.assertEqual(client.calls, [])

    def test_forwards_path_and_query_after_html(self):
        client = FakeClient(
            html_response("https://t.example/"),
            ProxiedResponse(url="https://t.example/a/b?c=1", status_code=200,
                            content_type="application/json", content=b'{"u": "https://t.example/z"}'),
        )
        addon = OriginProxyAddon(OriginTracker(), client)
        addon.route(make_flow("GET", "/proxy?url=" + quote("https://t.example/", safe="")))

        flow = make_flow("GET", "/a/b?c=1", headers={"Accept": "application/json"})
        addon.route(flow)
        self.assertEqual(client.calls[1]["url"], "https://t.example/a/b?c=1")
        self.assertEqual(client.calls[1]["accept"], "application/json")
        self.assertEqual(flow.response.content, b'{"u": "/z"}')

    def test_post_body_forwarded_verbatim(self):
        client = FakeClient(ProxiedResponse(url="https://t.example/api", status_code=201,
                                            content_type="application/json", content=b"{}"))
        addon = OriginProxyAddon(OriginTracker("https://t.example"), client)
        flow = make_flow("POST", "/api", b'{"name": "x"}', {"Content-Type": "application/json"})
        addon.route(flow)

        call = client.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertEqual(call["body"], b'{"name": "x"}')
        self.assertEqual(call["body_type"], "application/json")
        self.assertEqual(flow.response.status_code, 201)

    def test_post_to_proxy_path_goes_to_catch_all(self):
        client = FakeClient(ProxiedResponse(url="https://t.example/proxy", status_code=200,
                                            content_type="text/plain", content=b"ok"))
        addon = OriginProxyAddon(OriginTracker("https://t.example"), client)
        addon.route(make_flow("POST", "/proxy", b"x"))
        self.assertEqual(client.calls[0]["url"], "https://t.example/proxy")

    def test_upstream_failure_is_502(self):
        client = FakeClient(UpstreamError("https://t.example/x", "timed out"))
        addon = OriginProxyAddon(OriginTracker("https://t.example"), client)
        flow = make_flow("GET", "/x")
        addon.route(flow)
        self.assertEqual(flow.response.status_code, 502)
        self.assertEqual(json.loads(flow.response.content)["url"], "https://t.example/x")


class TestPreflight(unittest.TestCase):

    def test_options_is_204_with_cors(self):
        client = FakeClient()
        addon = OriginProxyAddon(OriginTracker(), client)
        flow = make_flow("OPTIONS", "/anything")
        addon.route(flow)
        self.assertEqual(flow.response.status_code, 204)
        self.assertEqual(flow.response.headers["Access-Control-Allow-Headers"], "*")
        self.assertIn("DELETE", flow.response.headers["Access-Control-Allow-Methods"])
        self.assertNotIn("X-Frame-Options", flow.response.headers)
        self.assertEqual(client.calls, [])


class ThreadRecordingClient(FakeClient):

    def fetch(self, url, **kwargs):
        self.thread = threading.get_ident()
        return super().fetch(url, **kwargs)


class TestRequestHook(unittest.IsolatedAsyncioTestCase):

    async def test_hook_routes_on_worker_thread(self):
        client = ThreadRecordingClient(html_response("https://t.example/"))
        addon = OriginProxyAddon(OriginTracker(), client)
        flow = make_flow("GET", "/proxy?url=" + quote("https://t.example/", safe=""))

        await addon.request(flow)

        self.assertEqual(flow.response.status_code, 200)
        self.assertEqual(client.calls[0]["url"], "https://t.example/")
        self.assertNotEqual(client.thread, threading.get_ident())
