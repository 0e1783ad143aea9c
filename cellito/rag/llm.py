from __future__ import annotations

"""Chat completion clients and deterministic generation settings."""

from dataclasses import dataclass
import asyncio
import logging
import re

import httpx

from cellito.rag.types import CompletionRequest


class LLMError(RuntimeError):
    """Raised when LLM requests fail or responses are invalid."""
    pass


class LLMTimeoutError(LLMError):
    """Raised when an LLM request exceeds its timeout."""
    pass


logger = logging.getLogger(__name__)


_SYSTEM_PROMPT = (
    "Você é o Cellito, expert em customer experience. "
    "Forneça respostas PRECISAS, CONSISTENTES e ESPECÍFICAS usando SOMENTE as "
    "informações no bloco \"BASE DE CONHECIMENTO\" abaixo.\n\n"
    "REGRAS:\n"
    "- Ignore erros ortográficos e leia as informações na mesma.\n"
    "- Responda SEMPRE no idioma em que lhe for perguntado, mesmo que seja "
    "necessário traduzir a informação da base de conhecimento.\n"
    "- Se a resposta não estiver na base, diga-o e sugira uma pergunta relacionada.\n"
    "1. Não invente dados, preços, prazos ou nomes de planos.\n"
    "2. Sempre responda no idioma do usuário.\n"
    "3. Quando for pedido, compare planos e serviços com base na informação disponível.\n"
    "4. Sempre inclua preços ao falar de planos.\n"
    "5. Use respostas curtas e claras.\n"
    "6. Se o mesmo plano tiver variações (diário, semanal, mensal), destaque as diferenças.\n"
    "7. Reconheça sinônimos, abreviações e erros ortográficos.\n"
    "8. Mantenha a mesma resposta para perguntas idênticas.\n\n"
    "Quando fizer comparações, use esta estrutura:\n"
    "- Nome do plano: [benefícios] - [preço]\n"
)

_QUERY_NORMALIZE_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def base_system_prompt() -> str:
    """Return the default system prompt for answer generation."""
    return _SYSTEM_PROMPT


def build_system_prompt(context: str, base_prompt: str | None = None) -> str:
    """Append the knowledge block to the persona and rules."""
    prompt = base_prompt or _SYSTEM_PROMPT
    return f"{prompt}\n---\nBASE DE CONHECIMENTO:\n{context}\n---\n"


def normalize_query(query: str) -> str:
    cleaned = _QUERY_NORMALIZE_RE.sub("", query.lower())
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def query_seed(query: str, modulo: int = 1000) -> int:
    """Stable 32-bit string hash of the normalized query, reduced to a small seed."""
    value = 0
    for char in normalize_query(query):
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 0x100000000
    return abs(value) % modulo


@dataclass(frozen=True)
class Determinism:
    """Generation knobs that keep repeated questions answered identically."""
    temperature: float = 0.3
    seed: int = 42
    seed_from_query: bool = False

    def seed_for(self, query: str) -> int:
        if self.seed_from_query:
            return query_seed(query)
        return self.seed


@dataclass(frozen=True)
class OpenAIChatClient:
    """Chat client for OpenAI-compatible ``/chat/completions`` APIs (Groq, OpenAI)."""
    api_key: str
    base_url: str
    model: str
    timeout: float
    top_p: float = 0.95
    frequency_penalty: float = 0.2
    presence_penalty: float = 0.1
    transport: httpx.AsyncBaseTransport | None = None

    async def complete(self, request: CompletionRequest) -> str:
        """Generate a completion using the chat completions endpoint."""
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
        }
        if request.seed is not None:
            payload["seed"] = request.seed
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(str(exc) or "LLM request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise LLMError(f"API error: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc
        except ValueError as exc:
            raise LLMError("Invalid OpenAI response") from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid OpenAI response content")
        return content.strip()


@dataclass(frozen=True)
class OllamaChatClient:
    """Chat client backed by the Ollama chat API."""
    base_url: str
    model: str
    timeout: float
    transport: httpx.AsyncBaseTransport | None = None

    async def complete(self, request: CompletionRequest) -> str:
        """Generate a completion using Ollama."""
        options: dict[str, object] = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens,
        }
        if request.seed is not None:
            options["seed"] = request.seed
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "stream": False,
            "options": options,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(str(exc) or "LLM request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise LLMError(f"API error: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise LLMError(str(exc)) from exc
        except ValueError as exc:
            raise LLMError("Invalid LLM response") from exc

        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid LLM response")
        return content.strip()


@dataclass(frozen=True)
class GeminiChatClient:
    """Chat client backed by Gemini generative models."""
    api_key: str
    model: str
    timeout: float

    async def complete(self, request: CompletionRequest) -> str:
        """Generate a completion using Gemini."""
        try:
            import google.generativeai as genai
        except ImportError as exc:
            raise LLMError("google-generativeai is required for GeminiChatClient") from exc

        prompt = f"{request.system_prompt}\n\n{request.user_prompt}"

        def _run() -> str:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(self.model)
            response = model.generate_content(
                prompt,
                generation_config={
                    "temperature": request.temperature,
                    "max_output_tokens": request.max_tokens,
                },
            )
            return getattr(response, "text", "") or ""

        try:
            content = await asyncio.wait_for(asyncio.to_thread(_run), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise LLMTimeoutError("Gemini request timed out") from exc
        except Exception as exc:
            raise LLMError(str(exc)) from exc
        return content.strip()


def build_chat_client(
    provider: str,
    *,
    api_key_openai: str | None,
    api_key_groq: str | None,
    api_key_gemini: str | None,
    openai_base_url: str,
    groq_base_url: str,
    chat_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    timeout: float,
) -> OpenAIChatClient | OllamaChatClient | GeminiChatClient:
    """Factory for chat completion clients based on provider."""
    normalized = provider.strip().lower()
    if normalized == "groq":
        if not api_key_groq:
            raise LLMError("GROQ_API_KEY is required for Groq provider")
        if not chat_model:
            raise LLMError("CELLITO_CHAT_MODEL is required for Groq provider")
        return OpenAIChatClient(
            api_key=api_key_groq,
            base_url=groq_base_url.rstrip("/"),
            model=chat_model,
            timeout=timeout,
        )
    if normalized == "openai":
        if not api_key_openai:
            raise LLMError("OPENAI_API_KEY is required for OpenAI provider")
        if not chat_model:
            raise LLMError("CELLITO_CHAT_MODEL is required for OpenAI provider")
        return OpenAIChatClient(
            api_key=api_key_openai,
            base_url=openai_base_url.rstrip("/"),
            model=chat_model,
            timeout=timeout,
        )
    if normalized in {"gemini", "google"}:
        if not api_key_gemini:
            raise LLMError("GEMINI_API_KEY is required for Gemini provider")
        if not chat_model:
            raise LLMError("CELLITO_CHAT_MODEL is required for Gemini provider")
        return GeminiChatClient(api_key=api_key_gemini, model=chat_model, timeout=timeout)
    return OllamaChatClient(
        base_url=ollama_base_url.rstrip("/"),
        model=ollama_model,
        timeout=timeout,
    )
