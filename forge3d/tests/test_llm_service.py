"""Tests for the prompt relay (no real API calls)."""

import asyncio
import json
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from forge3d import config
from forge3d.prompts.examples import EXAMPLES, format_few_shot
from forge3d.prompts.system_prompt import SYSTEM_PROMPT
from forge3d.services import llm_service
from forge3d.services.llm_service import RelayError


CODE = "def create_object():\n    return THREE.Mesh(THREE.BoxGeometry(1, 1, 1), THREE.MeshStandardMaterial())"
REPLY = f"Here is your cube:\n```python\n{CODE}\n```"


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def keys(monkeypatch):
    monkeypatch.setattr(config, "OPENROUTER_API_KEY", "or-test")
    monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "g-test")


@pytest.fixture
def openrouter(monkeypatch, keys):
    """Install a mock transport and return the list of captured requests."""
    captured = []
    state = {"handler": lambda request: httpx.Response(200, json=completion(REPLY))}

    def dispatch(request):
        captured.append(request)
        return state["handler"](request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(dispatch))
    monkeypatch.setattr(llm_service, "_http_client", client)
    return SimpleNamespace(requests=captured, state=state)


class TestPrompts:
    def test_system_prompt_names_entry_point(self):
        assert "def create_object():" in SYSTEM_PROMPT
        assert "```python" in SYSTEM_PROMPT

    def test_few_shot_contains_every_example(self):
        text = format_few_shot()
        for ex in EXAMPLES:
            assert ex["prompt"] in text
        assert text.count("```python") == len(EXAMPLES)


class TestKeys:
    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(config, "OPENROUTER_API_KEY", "")
        with pytest.raises(RelayError) as exc:
            asyncio.run(llm_service.complete("a cube", "openrouter"))
        assert exc.value.status_code == 500
        assert exc.value.error == "OpenRouter API key not configured"

    def test_placeholder_key(self, monkeypatch):
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", config.PLACEHOLDER_API_KEY)
        assert llm_service.is_configured("claude") is False
        with pytest.raises(RelayError) as exc:
            asyncio.run(llm_service.complete("a cube", "claude"))
        assert exc.value.status_code == 500

    def test_unknown_provider(self, keys):
        with pytest.raises(RelayError) as exc:
            asyncio.run(llm_service.complete("a cube", "mistral"))
        assert exc.value.status_code == 400

    def test_default_provider(self, openrouter, monkeypatch):
        monkeypatch.setattr(config, "DEFAULT_PROVIDER", "openrouter")
        _, meta = asyncio.run(llm_service.complete("a cube"))
        assert meta["provider"] == "openrouter"
        assert meta["model"] == config.DEFAULT_MODELS["openrouter"]


class TestOpenRouter:
    def test_request_shape(self, openrouter):
        asyncio.run(llm_service.complete("a red cube", "openrouter"))
        request = openrouter.requests[0]
        assert str(request.url) == config.OPENROUTER_URL
        assert request.headers["Authorization"] == "Bearer or-test"
        assert request.headers["X-Title"] == config.OPENROUTER_TITLE
        body = json.loads(request.content)
        assert body["model"] == config.OPENROUTER_MODELS["gemini-flash"]
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][0]["content"].startswith(SYSTEM_PROMPT)
        assert body["messages"][1] == {"role": "user", "content": "Create a 3D object: a red cube"}
        assert body["temperature"] == config.TEMPERATURE
        assert body["max_tokens"] == config.MAX_TOKENS

    def test_generate_code_extracts(self, openrouter):
        code, raw, meta = asyncio.run(llm_service.generate_code("a cube", "openrouter"))
        assert code == CODE
        assert raw == REPLY
        assert "llm_time_s" in meta

    def test_unfenced_reply_passes_through(self, openrouter):
        openrouter.state["handler"] = lambda request: httpx.Response(200, json=completion(f"  {CODE}  "))
        code, _, _ = asyncio.run(llm_service.generate_code("a cube", "openrouter"))
        assert code == CODE

    def test_empty_choices(self, openrouter):
        openrouter.state["handler"] = lambda request: httpx.Response(200, json={"choices": []})
        raw, _ = asyncio.run(llm_service.complete("a cube", "openrouter"))
        assert raw == ""

    def test_upstream_error_status_forwarded(self, openrouter):
        openrouter.state["handler"] = lambda request: httpx.Response(429, text="rate limited")
        with pytest.raises(RelayError) as exc:
            asyncio.run(llm_service.complete("a cube", "openrouter"))
        assert exc.value.status_code == 429
        assert exc.value.error == "Failed to generate 3D code"
        assert exc.value.details == "rate limited"

    def test_transport_failure(self, openrouter):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        openrouter.state["handler"] = boom
        with pytest.raises(RelayError) as exc:
            asyncio.run(llm_service.complete("a cube", "openrouter"))
        assert exc.value.status_code == 502

    def test_no_retry(self, openrouter):
        openrouter.state["handler"] = lambda request: httpx.Response(503, text="down")
        with pytest.raises(RelayError):
            asyncio.run(llm_service.complete("a cube", "openrouter"))
        assert len(openrouter.requests) == 1


class TestOpenRouterStream:
    def test_tokens(self, openrouter):
        lines = [
            'data: {"choices":[{"delta":{"content":"def "}}]}',
            ": keep-alive",
            'data: {"choices":[{"delta":{"content":"create_object"}}]}',
            "data: [DONE]",
        ]
        openrouter.state["handler"] = lambda request: httpx.Response(
            200, content="\n\n".join(lines).encode()
        )

        async def collect():
            return [t async for t in llm_service.stream("a cube", "openrouter")]

        assert asyncio.run(collect()) == ["def ", "create_object"]
        assert json.loads(openrouter.requests[0].content)["stream"] is True

    def test_error_status(self, openrouter):
        openrouter.state["handler"] = lambda request: httpx.Response(401, text="bad key")

        async def collect():
            return [t async for t in llm_service.stream("a cube", "openrouter")]

        with pytest.raises(RelayError) as exc:
            asyncio.run(collect())
        assert exc.value.status_code == 401


class FakeClaudeMessages:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.reply)])


class TestClaude:
    def test_complete(self, keys, monkeypatch):
        messages = FakeClaudeMessages(reply=REPLY)
        monkeypatch.setattr(llm_service, "_get_claude_client", lambda: SimpleNamespace(messages=messages))
        code, _, meta = asyncio.run(llm_service.generate_code("a cube", "claude", "sonnet"))
        assert code == CODE
        assert meta["provider"] == "claude"
        call = messages.calls[0]
        assert call["model"] == config.CLAUDE_MODELS["sonnet"]
        assert call["messages"] == [{"role": "user", "content": "Create a 3D object: a cube"}]
        assert call["system"].startswith(SYSTEM_PROMPT)

    def test_status_error_mapped(self, keys, monkeypatch):
        response = httpx.Response(529, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        error = anthropic.APIStatusError("overloaded", response=response, body=None)
        messages = FakeClaudeMessages(error=error)
        monkeypatch.setattr(llm_service, "_get_claude_client", lambda: SimpleNamespace(messages=messages))
        with pytest.raises(RelayError) as exc:
            asyncio.run(llm_service.complete("a cube", "claude"))
        assert exc.value.status_code == 529


class TestGemini:
    def test_complete(self, keys, monkeypatch):
        calls = []

        async def generate_content(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(text=REPLY)

        client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))
        monkeypatch.setattr(llm_service, "_get_gemini_client", lambda: client)
        code, _, meta = asyncio.run(llm_service.generate_code("a cube", "gemini"))
        assert code == CODE
        assert meta["model"] == "flash"
        assert calls[0]["model"] == config.GEMINI_MODELS["flash"]
        assert calls[0]["config"]["system_instruction"].startswith(SYSTEM_PROMPT)

    def test_transport_error_is_502(self, keys, monkeypatch):
        async def generate_content(**kwargs):
            raise httpx.ConnectError("connection refused")

        client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))
        monkeypatch.setattr(llm_service, "_get_gemini_client", lambda: client)
        with pytest.raises(RelayError) as exc:
            asyncio.run(llm_service.generate_code("a cube", "gemini"))
        assert exc.value.status_code == 502
        assert exc.value.error == "Upstream request failed"
        assert "connection refused" in exc.value.details

    def test_stream_transport_error_is_502(self, keys, monkeypatch):
        async def generate_content_stream(**kwargs):
            raise httpx.ReadTimeout("timed out")

        client = SimpleNamespace(
            aio=SimpleNamespace(models=SimpleNamespace(generate_content_stream=generate_content_stream))
        )
        monkeypatch.setattr(llm_service, "_get_gemini_client", lambda: client)

        async def collect():
            return [t async for t in llm_service.stream("a cube", "gemini")]

        with pytest.raises(RelayError) as exc:
            asyncio.run(collect())
        assert exc.value.status_code == 502
