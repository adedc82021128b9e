from dataclasses import dataclass
from functools import lru_cache
import os


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_prefixes(value: str | None, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    prefixes = tuple(item.strip() for item in value.split(",") if item.strip())
    return prefixes or default


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool
    chunk_max_chars: int
    chunk_max_passages: int
    query_top_n: int
    upstream_origin: str
    upstream_timeout_seconds: float
    cache_name_prefix: str
    cache_version: str
    cache_path_prefixes: tuple[str, ...]
    replay_lease_seconds: int
    llm_base_url: str
    llm_model: str
    llm_fallback_model: str
    llm_api_key: str | None
    llm_timeout_seconds: float
    ask_prefer_local: bool
    log_level: str

    @property
    def cache_name(self) -> str:
        return f"{self.cache_name_prefix}-{self.cache_version}"


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv(
            "OFFLINE_DATABASE_URL",
            "sqlite+pysqlite:///data/offline.db",
        ),
        db_echo=_to_bool(os.getenv("OFFLINE_DB_ECHO"), default=False),
        chunk_max_chars=_to_int(os.getenv("CHUNK_MAX_CHARS"), default=800, minimum=100),
        chunk_max_passages=_to_int(os.getenv("CHUNK_MAX_PASSAGES"), default=3000, minimum=1),
        query_top_n=_to_int(os.getenv("QUERY_TOP_N"), default=5, minimum=1),
        upstream_origin=os.getenv("UPSTREAM_ORIGIN", "http://localhost:3000"),
        upstream_timeout_seconds=float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30")),
        cache_name_prefix=os.getenv("CACHE_NAME_PREFIX", "tutor-cache"),
        cache_version=os.getenv("CACHE_VERSION", "v1"),
        cache_path_prefixes=_to_prefixes(
            os.getenv("CACHE_PATH_PREFIXES"),
            default=("/_next/", "/api/"),
        ),
        replay_lease_seconds=_to_int(os.getenv("REPLAY_LEASE_SECONDS"), default=120, minimum=1),
        llm_base_url=os.getenv("LLM_BASE_URL", "https://api.openai.com/v1"),
        llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
        llm_fallback_model=os.getenv("LLM_FALLBACK_MODEL", "gpt-3.5-turbo"),
        llm_api_key=os.getenv("LLM_API_KEY") or None,
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
        ask_prefer_local=_to_bool(os.getenv("ASK_PREFER_LOCAL"), default=False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
