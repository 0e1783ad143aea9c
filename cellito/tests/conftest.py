from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("CELLITO_ALLOW_ANONYMOUS", "true")
os.environ.pop("CELLITO_API_KEYS", None)
os.environ.pop("CELLITO_API_KEY_MAP", None)
os.environ.pop("GROQ_API_KEY", None)
os.environ.pop("OPENAI_API_KEY", None)
os.environ["CELLITO_WEB_SEARCH_ENABLED"] = "false"
os.environ["CELLITO_CACHE_BACKEND"] = "memory"
os.environ.pop("CELLITO_FEEDBACK_DB_URI", None)

from cellito.rag.types import CompletionRequest, RawDocument, WebResult  # noqa: E402


class RecordingChat:
    """Chat service double that records requests and returns a fixed reply."""
    def __init__(self, reply: str = "O plano Socializa custa 500 Kz por dia.") -> None:
        self.reply = reply
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> str:
        self.requests.append(request)
        return self.reply


class StaticWebSearch:
    """Web search double returning a fixed result list."""
    def __init__(self, results: list[WebResult] | None = None) -> None:
        self.results = list(results or [])
        self.queries: list[str] = []

    async def search(self, query: str, limit: int = 3) -> list[WebResult]:
        self.queries.append(query)
        return self.results[:limit]


PLAN_TEXT = (
    "O plano Socializa custa 500 Kz por dia. Inclui acesso ilimitado ao WhatsApp e ao Facebook. "
    "A ativação é feita pelo menu de serviços da Africell."
)
ROAMING_TEXT = (
    "O serviço de roaming está disponível em vários países parceiros. "
    "Para ativar o roaming, contacte o apoio ao cliente com antecedência."
)
PAYMENT_TEXT = (
    "Os carregamentos podem ser feitos em agentes autorizados e nas lojas oficiais. "
    "O saldo fica disponível imediatamente após a confirmação do pagamento."
)


def make_document(doc_id: str, title: str, text: str, **kwargs) -> RawDocument:
    return RawDocument(doc_id=doc_id, title=title, text=text, **kwargs)


@pytest.fixture
def chat() -> RecordingChat:
    return RecordingChat()


@pytest.fixture
def sample_documents() -> list[RawDocument]:
    return [
        make_document("1", "Planos", PLAN_TEXT, category="Tarifários"),
        make_document("2", "Roaming", ROAMING_TEXT, category="Serviços"),
        make_document("3", "Carregamentos", PAYMENT_TEXT, category="Pagamentos"),
    ]


@pytest.fixture
def web_search_factory():
    return StaticWebSearch


@pytest.fixture
def chat_factory():
    return RecordingChat


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
