"""Tests for sidecar.runtime.opencode — the HTTP AgentRuntime."""

from __future__ import annotations

from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from sidecar.config import RuntimeConfig
from sidecar.runtime.base import PromptRequest, RuntimeRequestError, SessionCreationError
from sidecar.runtime.opencode import OpenCodeLauncher, OpenCodeRuntime, parse_model_string


class StubOpenCode:
    """Minimal in-process imitation of the OpenCode server API."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, Any]] = []
        self.status: dict[str, Any] = {}
        self.fail_session = False

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/session", self.create_session)
        app.router.add_post("/session/{id}/message", self.send_message)
        app.router.add_get("/session/{id}/message", self.get_messages)
        app.router.add_get("/session/status", self.get_status)
        app.router.add_get("/config", self.get_config)
        return app

    async def create_session(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(("POST", "/session", body))
        if self.fail_session:
            return web.json_response({"error": "nope"}, status=500)
        return web.json_response({"id": "ses_abc"})

    async def send_message(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(("POST", request.path, body))
        return web.json_response(
            {
                "info": {"role": "assistant"},
                "parts": [
                    {"type": "step-start"},
                    {"type": "text", "text": "Hello"},
                    {"type": "tool", "tool": "read"},
                    {"type": "text", "text": " world"},
                ],
            }
        )

    async def get_messages(self, request: web.Request) -> web.Response:
        return web.json_response(
            [
                {"info": {"role": "user"}, "parts": [{"type": "text", "text": "task"}]},
                {"info": {"role": "assistant"}, "parts": [{"type": "text", "text": "answer"}]},
                "garbage",
            ]
        )

    async def get_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.status)

    async def get_config(self, request: web.Request) -> web.Response:
        return web.json_response({})


@pytest.fixture()
def stub() -> StubOpenCode:
    return StubOpenCode()


async def _runtime(stub: StubOpenCode) -> tuple[TestServer, OpenCodeRuntime]:
    server = TestServer(stub.app())
    await server.start_server()
    runtime = OpenCodeRuntime(str(server.make_url("")), request_timeout=5.0)
    return server, runtime


def test_parse_model_string() -> None:
    assert parse_model_string("openrouter/google/gemini-2.5-flash") == {
        "providerID": "openrouter",
        "modelID": "google/gemini-2.5-flash",
    }
    assert parse_model_string("anthropic/claude-sonnet-4") == {
        "providerID": "anthropic",
        "modelID": "claude-sonnet-4",
    }
    assert parse_model_string("gpt-4o") == {"providerID": "openrouter", "modelID": "gpt-4o"}
    assert parse_model_string({"providerID": "p", "modelID": "m"}) == {"providerID": "p", "modelID": "m"}


class TestOpenCodeRuntime:
    @pytest.mark.asyncio
    async def test_session_and_prompt(self, stub: StubOpenCode) -> None:
        server, runtime = await _runtime(stub)
        try:
            session_id = await runtime.create_session(parent_id="ses_parent")
            assert session_id == "ses_abc"

            response = await runtime.send_prompt(
                session_id,
                PromptRequest(
                    model="openrouter/google/gemini-2.5-flash",
                    briefing_text="Do the thing",
                    system="sys",
                    agent_role="Explore",
                    reasoning_effort="high",
                ),
            )
            assert response.text_parts == ["Hello", " world"]
            assert response.text == "Hello world"

            assert stub.requests[0] == ("POST", "/session", {"parentID": "ses_parent"})
            _, path, body = stub.requests[1]
            assert path == "/session/ses_abc/message"
            assert body == {
                "model": {"providerID": "openrouter", "modelID": "google/gemini-2.5-flash"},
                "parts": [{"type": "text", "text": "Do the thing"}],
                "system": "sys",
                "agent": "Explore",
                "reasoning": {"effort": "high"},
            }
        finally:
            await runtime.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_optional_prompt_fields_omitted(self, stub: StubOpenCode) -> None:
        server, runtime = await _runtime(stub)
        try:
            await runtime.send_prompt("ses_abc", PromptRequest(model="m", briefing_text="hi"))
            _, _, body = stub.requests[0]
            assert set(body) == {"model", "parts"}
        finally:
            await runtime.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_session_creation_failure(self, stub: StubOpenCode) -> None:
        stub.fail_session = True
        server, runtime = await _runtime(stub)
        try:
            with pytest.raises(SessionCreationError, match="HTTP 500"):
                await runtime.create_session()
        finally:
            await runtime.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_get_messages(self, stub: StubOpenCode) -> None:
        server, runtime = await _runtime(stub)
        try:
            messages = await runtime.get_messages("ses_abc")
            assert [(m.role, m.text_parts) for m in messages] == [
                ("user", ["task"]),
                ("assistant", ["answer"]),
            ]
        finally:
            await runtime.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_status_mapping(self, stub: StubOpenCode) -> None:
        server, runtime = await _runtime(stub)
        try:
            stub.status = {"ses_abc": {"type": "busy"}}
            assert (await runtime.get_status("ses_abc")).status == "running"
            assert (await runtime.get_status("ses_other")).status == "idle"

            stub.status = {"ses_abc": {"type": "retry"}}
            assert (await runtime.get_status("ses_abc")).stopped is False

            stub.status = {"ses_abc": {"type": "error", "error": "boom"}}
            status = await runtime.get_status("ses_abc")
            assert status.status == "error"
            assert status.error == "boom"
        finally:
            await runtime.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_health(self, stub: StubOpenCode) -> None:
        server, runtime = await _runtime(stub)
        try:
            assert await runtime.check_health() is True
        finally:
            await runtime.close()
            await server.close()

        # Server gone: health is False, other calls raise.
        assert await runtime.check_health() is False
        with pytest.raises(RuntimeRequestError):
            await runtime.get_messages("ses_abc")
        await runtime.close()

    @pytest.mark.asyncio
    async def test_unknown_route_is_request_error(self, stub: StubOpenCode) -> None:
        server, runtime = await _runtime(stub)
        try:
            with pytest.raises(RuntimeRequestError, match="HTTP 404"):
                await runtime._request("GET", "/nope")
        finally:
            await runtime.close()
            await server.close()


class TestOpenCodeLauncher:
    def test_command(self) -> None:
        launcher = OpenCodeLauncher(RuntimeConfig(binary="/opt/opencode", hostname="127.0.0.1", port=5000))
        assert launcher._command() == ["/opt/opencode", "serve", "--hostname=127.0.0.1", "--port=5000"]

    @pytest.mark.asyncio
    async def test_missing_binary(self) -> None:
        from sidecar.runtime.base import RuntimeStartError

        launcher = OpenCodeLauncher(RuntimeConfig(binary="/nonexistent/opencode-binary"))
        with pytest.raises(RuntimeStartError, match="Cannot launch"):
            await launcher.start()
