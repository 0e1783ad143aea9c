from __future__ import annotations

import json
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    corpus_source: str = os.getenv("CELLITO_CORPUS_SOURCE", "articles")
    documents_path: str = os.getenv("CELLITO_DOCUMENTS_PATH", "./documents")
    sharepoint_site_url: str = os.getenv("SHAREPOINT_SITE_URL", "")
    sharepoint_access_token: str = os.getenv("SHAREPOINT_ACCESS_TOKEN", "")
    sharepoint_list_name: str = os.getenv("SHAREPOINT_LIST_NAME", "ArticlesList")
    sharepoint_timeout: float = float(os.getenv("SHAREPOINT_TIMEOUT", "30"))
    cache_backend: str = os.getenv("CELLITO_CACHE_BACKEND", "memory")
    cache_db_uri: str | None = os.getenv("CELLITO_CACHE_DB_URI")
    cache_key: str = os.getenv("CELLITO_CACHE_KEY", "cellito-rag-cache")
    article_chunk_size: int = int(os.getenv("CELLITO_ARTICLE_CHUNK_SIZE", "800"))
    file_chunk_size: int = int(os.getenv("CELLITO_FILE_CHUNK_SIZE", "500"))
    chunk_overlap: int = int(os.getenv("CELLITO_CHUNK_OVERLAP", "100"))
    max_chunks: int = int(os.getenv("CELLITO_MAX_CHUNKS", "3"))
    min_score: float = float(os.getenv("CELLITO_MIN_SCORE", "30"))
    max_context_tokens: int = int(os.getenv("CELLITO_MAX_CONTEXT_TOKENS", "2500"))
    low_confidence_threshold: int = int(os.getenv("CELLITO_LOW_CONFIDENCE_THRESHOLD", "40"))
    llm_provider: str = os.getenv("CELLITO_LLM_PROVIDER", "groq")
    chat_model: str | None = os.getenv("CELLITO_CHAT_MODEL", "openai/gpt-oss-20b")
    llm_max_tokens: int = int(os.getenv("CELLITO_LLM_MAX_TOKENS", "1500"))
    llm_timeout: float = float(os.getenv("CELLITO_LLM_TIMEOUT", "30"))
    groq_api_key: str | None = os.getenv("GROQ_API_KEY")
    groq_base_url: str = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "gpt-oss:20b")
    temperature: float = float(os.getenv("CELLITO_TEMPERATURE", "0.3"))
    seed: int = int(os.getenv("CELLITO_SEED", "42"))
    seed_from_query: bool = _flag("CELLITO_SEED_FROM_QUERY", "false")
    web_search_enabled: bool = _flag("CELLITO_WEB_SEARCH_ENABLED", "true")
    google_search_api_key: str | None = os.getenv("GOOGLE_SEARCH_API_KEY")
    google_search_engine_id: str | None = os.getenv("GOOGLE_SEARCH_ENGINE_ID")
    web_query_prefix: str = os.getenv("CELLITO_WEB_QUERY_PREFIX", "africell: ")
    web_timeout: float = float(os.getenv("CELLITO_WEB_TIMEOUT", "10"))
    web_max_results: int = int(os.getenv("CELLITO_WEB_MAX_RESULTS", "3"))
    feedback_db_uri: str | None = os.getenv("CELLITO_FEEDBACK_DB_URI")
    feedback_min_confidence: float = float(os.getenv("CELLITO_FEEDBACK_MIN_CONFIDENCE", "70"))
    record_min_confidence: int = int(os.getenv("CELLITO_RECORD_MIN_CONFIDENCE", "80"))
    api_keys_raw: str = os.getenv("CELLITO_API_KEYS", "")
    api_key_map_raw: str = os.getenv("CELLITO_API_KEY_MAP", "")
    log_level: str = os.getenv("CELLITO_LOG_LEVEL", "INFO")
    metrics_enabled: bool = _flag("CELLITO_METRICS_ENABLED", "true")

    @property
    def allow_anonymous(self) -> bool:
        return _flag("CELLITO_ALLOW_ANONYMOUS", "false")

    @property
    def api_keys(self) -> set[str]:
        raw = os.getenv("CELLITO_API_KEYS", self.api_keys_raw)
        return {value.strip() for value in raw.split(",") if value.strip()}

    @property
    def api_key_map(self) -> dict[str, str]:
        """Map of API key to role, parsed from a JSON object."""
        raw = os.getenv("CELLITO_API_KEY_MAP", self.api_key_map_raw).strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        result: dict[str, str] = {}
        for key, value in data.items():
            if isinstance(value, dict):
                value = value.get("role")
            if isinstance(key, str) and isinstance(value, str):
                result[key] = value.lower()
        return result

    @property
    def chunk_size(self) -> int:
        if self.corpus_source.strip().lower() == "files":
            return self.file_chunk_size
        return self.article_chunk_size


settings = Settings()
