"""
tests/test_client.py — ProxyClient against an in-process aiohttp server.
"""

from __future__ import annotations

import asyncio
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer

from pictovoice.llm.client import ProxyClient, ProxyError, ProxyTimeout


class TestProxyClient(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.received: list = []

        async def test_connection(request: web.Request) -> web.Response:
            return web.json_response({"status": "connected", "message": "ok"})

        async def generate(request: web.Request) -> web.Response:
            body = await request.json()
            self.received.append(body)
            if not body.get("concepts"):
                return web.json_response({"error": "concepts required"}, status=400)
            return web.json_response(
                {"phrase": "  I need water.  ", "source": "remote", "concepts": body["concepts"]}
            )

        async def slow(request: web.Request) -> web.Response:
            await asyncio.sleep(2)
            return web.json_response({})

        async def not_json(request: web.Request) -> web.Response:
            return web.Response(text="<html>proxy</html>")

        app = web.Application()
        app.router.add_get("/api/test-connection", test_connection)
        app.router.add_post("/api/generate-phrase", generate)
        app.router.add_get("/slow/api/test-connection", slow)
        app.router.add_get("/html/api/test-connection", not_json)
        self.server = TestServer(app)
        await self.server.start_server()
        self.base_url = f"http://{self.server.host}:{self.server.port}"
        self.client = ProxyClient(self.base_url)

    async def asyncTearDown(self) -> None:
        await self.client.close()
        await self.server.close()

    async def test_probe_connected(self) -> None:
        reply = await self.client.test_connection(timeout_s=2)
        self.assertTrue(reply.connected)
        self.assertEqual(reply.message, "ok")

    async def test_generate_preserves_order_and_strips(self) -> None:
        reply = await self.client.generate(["water", "self", "help"], timeout_s=2)
        self.assertEqual(self.received, [{"concepts": ["water", "self", "help"]}])
        self.assertEqual(reply.phrase, "I need water.")
        self.assertEqual(reply.source, "remote")
        self.assertIsNone(reply.reason)

    async def test_http_error_carries_status(self) -> None:
        with self.assertRaises(ProxyError) as ctx:
            await self.client.generate([], timeout_s=2)
        self.assertEqual(ctx.exception.status, 400)
        self.assertIn("concepts required", str(ctx.exception))
        self.assertNotIsInstance(ctx.exception, ProxyTimeout)

    async def test_timeout(self) -> None:
        client = ProxyClient(self.base_url + "/slow")
        try:
            with self.assertRaises(ProxyTimeout) as ctx:
                await client.test_connection(timeout_s=0.2)
            self.assertIn("timed out", str(ctx.exception))
        finally:
            await client.close()

    async def test_invalid_body(self) -> None:
        client = ProxyClient(self.base_url + "/html")
        try:
            with self.assertRaises(ProxyError):
                await client.test_connection(timeout_s=2)
        finally:
            await client.close()

    async def test_connection_refused_is_not_a_timeout(self) -> None:
        async with ProxyClient("http://127.0.0.1:1") as client:
            with self.assertRaises(ProxyError) as ctx:
                await client.test_connection(timeout_s=2)
        self.assertNotIsInstance(ctx.exception, ProxyTimeout)
        self.assertIsNone(ctx.exception.status)


if __name__ == "__main__":
    unittest.main()
