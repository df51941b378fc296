"""
OpenCode runtime — AgentRuntime over an OpenCode HTTP server.

``OpenCodeRuntime`` speaks the server's REST API with aiohttp.
``OpenCodeLauncher`` spawns ``opencode serve`` as a child process, waits for
it to announce its listening URL, and terminates it on close.

Transport retries are deliberately absent: a failed request surfaces as
``RuntimeRequestError`` and the caller decides what it means.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from typing import Any, Optional

import aiohttp
import structlog

from sidecar.config import RuntimeConfig
from sidecar.runtime.base import (
    AgentRuntime,
    PromptRequest,
    PromptResponse,
    RuntimeHandle,
    RuntimeLauncher,
    RuntimeMessage,
    RuntimeRequestError,
    RuntimeStartError,
    RuntimeStatus,
    SessionCreationError,
)

logger = structlog.get_logger(__name__)

DEFAULT_PROVIDER = "openrouter"
_LISTENING_RE = re.compile(r"listening on\s+(https?://\S+)", re.IGNORECASE)

# The server reports "busy"/"retry" while a session is working.
_STATUS_MAP = {
    "idle": "idle",
    "busy": "running",
    "retry": "running",
    "running": "running",
    "completed": "completed",
    "error": "error",
}


def parse_model_string(model: str | dict[str, str]) -> dict[str, str]:
    """``openrouter/google/gemini-2.5-flash`` → provider + model ids.

    A bare model name defaults to the openrouter provider.
    """
    if isinstance(model, dict):
        return model
    if not model:
        return {"providerID": DEFAULT_PROVIDER, "modelID": ""}
    provider, sep, rest = model.partition("/")
    if not sep:
        return {"providerID": DEFAULT_PROVIDER, "modelID": model}
    return {"providerID": provider, "modelID": rest}


def _text_parts(parts: Any) -> list[str]:
    if not isinstance(parts, list):
        return []
    return [
        str(part["text"])
        for part in parts
        if isinstance(part, dict) and part.get("type") == "text" and part.get("text")
    ]


class OpenCodeRuntime(AgentRuntime):
    """HTTP client for a running OpenCode server."""

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 300.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            async with self._client().request(method, url, json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise RuntimeRequestError(f"{method} {path} failed with HTTP {resp.status}: {body[:200]}")
                if resp.content_type == "application/json":
                    return await resp.json()
                text = await resp.text()
                return json.loads(text) if text.strip() else None
        except aiohttp.ClientError as e:
            raise RuntimeRequestError(f"{method} {path} failed: {e}") from e
        except json.JSONDecodeError as e:
            raise RuntimeRequestError(f"{method} {path} returned invalid JSON") from e

    async def create_session(self, parent_id: Optional[str] = None) -> str:
        body: dict[str, Any] = {"parentID": parent_id} if parent_id else {}
        try:
            data = await self._request("POST", "/session", body)
        except RuntimeRequestError as e:
            raise SessionCreationError(str(e)) from e

        session_id = None
        if isinstance(data, dict):
            session_id = data.get("id") or (data.get("session") or {}).get("id")
        if not session_id:
            raise SessionCreationError("No session ID returned")
        logger.debug("opencode.session_created", session_id=session_id, parent_id=parent_id)
        return str(session_id)

    async def send_prompt(self, session_id: str, request: PromptRequest) -> PromptResponse:
        body: dict[str, Any] = {
            "model": parse_model_string(request.model),
            "parts": [{"type": "text", "text": request.briefing_text}],
        }
        if request.system:
            body["system"] = request.system
        if request.agent_role:
            body["agent"] = request.agent_role
        if request.reasoning_effort:
            body["reasoning"] = {"effort": request.reasoning_effort}

        data = await self._request("POST", f"/session/{session_id}/message", body)
        parts = data.get("parts") if isinstance(data, dict) else None
        return PromptResponse(text_parts=_text_parts(parts))

    async def get_messages(self, session_id: str) -> list[RuntimeMessage]:
        data = await self._request("GET", f"/session/{session_id}/message")
        messages: list[RuntimeMessage] = []
        for item in data if isinstance(data, list) else []:
            if not isinstance(item, dict):
                continue
            info = item.get("info") if isinstance(item.get("info"), dict) else {}
            messages.append(
                RuntimeMessage(
                    role=str(info.get("role") or item.get("role") or "assistant"),
                    text_parts=_text_parts(item.get("parts")),
                )
            )
        return messages

    async def get_status(self, session_id: str) -> RuntimeStatus:
        data = await self._request("GET", "/session/status")
        entry: Any = None
        if isinstance(data, dict):
            entry = data.get(session_id, data if "status" in data or "type" in data else None)
        if not isinstance(entry, dict):
            # Sessions that are not working are absent from the status map.
            return RuntimeStatus(status="idle")
        raw = str(entry.get("status") or entry.get("type") or "idle").lower()
        return RuntimeStatus(status=_STATUS_MAP.get(raw, "running"), error=entry.get("error"))

    async def check_health(self) -> bool:
        try:
            await self._request("GET", "/config")
        except RuntimeRequestError:
            return False
        return True

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


class OpenCodeLauncher(RuntimeLauncher):
    """Spawns ``opencode serve`` and waits until it reports its URL."""

    def __init__(self, config: RuntimeConfig) -> None:
        self._config = config

    def _command(self) -> list[str]:
        return [
            self._config.binary,
            "serve",
            f"--hostname={self._config.hostname}",
            f"--port={self._config.port}",
        ]

    async def start(self, options: Optional[dict[str, Any]] = None) -> RuntimeHandle:
        options = options or {}
        env = dict(os.environ)
        server_config = {k: options[k] for k in ("mcp", "model") if options.get(k)}
        if server_config:
            env["OPENCODE_CONFIG_CONTENT"] = json.dumps(server_config)

        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise RuntimeStartError(f"Cannot launch {self._config.binary}: {e}") from e

        try:
            url = await asyncio.wait_for(self._read_url(proc), timeout=self._config.startup_timeout)
        except asyncio.TimeoutError as e:
            await self._terminate(proc)
            raise RuntimeStartError(
                f"Timed out after {self._config.startup_timeout}s waiting for the server to start"
            ) from e
        except RuntimeStartError:
            await self._terminate(proc)
            raise

        logger.info("opencode.server_started", url=url, pid=proc.pid)
        runtime = OpenCodeRuntime(url, request_timeout=self._config.request_timeout)
        # Keep reading stdout so the child never blocks on a full pipe.
        drain = asyncio.ensure_future(self._drain(proc))

        async def _close() -> None:
            await self._terminate(proc)
            drain.cancel()
            logger.info("opencode.server_stopped", pid=proc.pid)

        return RuntimeHandle(url=url, runtime=runtime, closer=_close, session_handle=proc)

    @staticmethod
    async def _read_url(proc: asyncio.subprocess.Process) -> str:
        output: list[str] = []
        assert proc.stdout is not None
        while True:
            line = await proc.stdout.readline()
            if not line:
                await proc.wait()
                raise RuntimeStartError(
                    f"Server exited with code {proc.returncode}: {''.join(output)[-500:]}"
                )
            text = line.decode("utf-8", errors="replace")
            output.append(text)
            match = _LISTENING_RE.search(text)
            if match:
                return match.group(1)

    @staticmethod
    async def _drain(proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            line = await proc.stdout.readline()
            if not line:
                return
            logger.debug("opencode.server_output", line=line.decode("utf-8", errors="replace").rstrip())

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("opencode.terminate_timeout_killing", pid=proc.pid)
            proc.kill()
            await proc.wait()
