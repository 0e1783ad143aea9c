from __future__ import annotations

import json

import httpx
import pytest

from cellito.rag.llm import (
    Determinism,
    GeminiChatClient,
    LLMError,
    LLMTimeoutError,
    OllamaChatClient,
    OpenAIChatClient,
    base_system_prompt,
    build_chat_client,
    build_system_prompt,
    normalize_query,
    query_seed,
)
from cellito.rag.types import CompletionRequest

REQUEST = CompletionRequest(
    system_prompt="sistema",
    user_prompt="quanto custa o plano Socializa",
    temperature=0.3,
    max_tokens=1500,
    seed=42,
)


def _client_kwargs(**overrides):
    values = {
        "api_key_openai": None,
        "api_key_groq": None,
        "api_key_gemini": None,
        "openai_base_url": "https://api.openai.com/v1",
        "groq_base_url": "https://api.groq.com/openai/v1/",
        "chat_model": "openai/gpt-oss-20b",
        "ollama_base_url": "http://localhost:11434/",
        "ollama_model": "llama3",
        "timeout": 30.0,
    }
    values.update(overrides)
    return values


@pytest.mark.anyio
async def test_openai_client_sends_deterministic_payload() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Resposta.  "}}]})

    client = OpenAIChatClient(
        api_key="gsk-test",
        base_url="https://api.groq.com/openai/v1",
        model="openai/gpt-oss-20b",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )

    content = await client.complete(REQUEST)

    assert content == "Resposta."
    assert captured["url"] == "https://api.groq.com/openai/v1/chat/completions"
    assert captured["auth"] == "Bearer gsk-test"
    body = captured["body"]
    assert body["model"] == "openai/gpt-oss-20b"
    assert body["messages"][0] == {"role": "system", "content": "sistema"}
    assert body["messages"][1]["role"] == "user"
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 1500
    assert body["seed"] == 42
    assert body["top_p"] == 0.95


@pytest.mark.anyio
async def test_openai_client_maps_status_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    client = OpenAIChatClient(
        api_key="k", base_url="http://llm", model="m", timeout=5,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(LLMError, match="API error: 500"):
        await client.complete(REQUEST)


@pytest.mark.anyio
async def test_openai_client_maps_timeouts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = OpenAIChatClient(
        api_key="k", base_url="http://llm", model="m", timeout=5,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(LLMTimeoutError):
        await client.complete(REQUEST)


@pytest.mark.anyio
async def test_openai_client_rejects_empty_choices() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    client = OpenAIChatClient(
        api_key="k", base_url="http://llm", model="m", timeout=5,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(LLMError):
        await client.complete(REQUEST)


@pytest.mark.anyio
async def test_ollama_client_passes_seed_in_options() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"content": "Olá"}})

    client = OllamaChatClient(
        base_url="http://ollama:11434",
        model="llama3",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )

    assert await client.complete(REQUEST) == "Olá"
    assert captured["path"] == "/api/chat"
    assert captured["body"]["stream"] is False
    assert captured["body"]["options"] == {"temperature": 0.3, "num_predict": 1500, "seed": 42}


def test_query_seed_is_stable_and_bounded() -> None:
    assert query_seed("ab") == 105
    assert query_seed("Olá, Plano!") == query_seed("  olá   plano ")
    assert 0 <= query_seed("quanto custa o plano Socializa") < 1000
    assert normalize_query("Quanto  custa?!") == "quanto custa"


def test_determinism_uses_fixed_seed_unless_derived() -> None:
    assert Determinism().seed_for("qualquer") == 42
    derived = Determinism(seed_from_query=True)
    assert derived.seed_for("ab") == 105


def test_system_prompt_wraps_knowledge_block() -> None:
    prompt = build_system_prompt("CONTEXTO")
    assert prompt.startswith(base_system_prompt())
    assert "BASE DE CONHECIMENTO:\nCONTEXTO\n---" in prompt
    assert build_system_prompt("X", base_prompt="Base").startswith("Base\n---")


def test_build_chat_client_selects_provider() -> None:
    groq = build_chat_client("Groq", **_client_kwargs(api_key_groq="gsk"))
    assert isinstance(groq, OpenAIChatClient)
    assert groq.base_url == "https://api.groq.com/openai/v1"

    ollama = build_chat_client("ollama", **_client_kwargs())
    assert isinstance(ollama, OllamaChatClient)
    assert ollama.base_url == "http://localhost:11434"

    gemini = build_chat_client("gemini", **_client_kwargs(api_key_gemini="g"))
    assert isinstance(gemini, GeminiChatClient)


def test_build_chat_client_requires_keys() -> None:
    with pytest.raises(LLMError):
        build_chat_client("groq", **_client_kwargs())
    with pytest.raises(LLMError):
        build_chat_client("openai", **_client_kwargs(api_key_openai="k", chat_model=None))
