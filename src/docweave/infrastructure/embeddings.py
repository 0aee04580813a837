"""HTTP embedding clients (Ollama, OpenAI-compatible) and their retry/cache wrapper."""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from docweave.models import EmbeddingService

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OPENAI_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "nomic-embed-text"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_S = 0.5
DEFAULT_CACHE_SIZE = 1024


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding provider configuration."""

    provider: str  # "ollama" or "openai"
    model: str
    base_url: str
    api_key_env: str = ""
    timeout: float = 60.0
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff_s: float = DEFAULT_RETRY_BACKOFF_S
    cache_size: int = DEFAULT_CACHE_SIZE


class EmbeddingError(Exception):
    """Raised when an embedding API call fails.

    ``transient`` marks failures worth retrying: transport errors, 429 and 5xx.
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


def _non_negative_int(raw: dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"Embedding config '{key}' must be a non-negative integer: {value!r}"
        raise ValueError(msg)
    return value


def _number(raw: dict[str, Any], key: str, default: float) -> float:
    try:
        return float(raw.get(key, default))
    except (TypeError, ValueError) as exc:
        msg = f"Embedding config '{key}' must be a number: {raw.get(key)!r}"
        raise ValueError(msg) from exc


def parse_embedding_config(raw: dict[str, Any] | None) -> EmbeddingConfig:
    """Parse and validate the ``embedding`` section of config.yml.

    An absent section selects a local Ollama server.

    Raises
    ------
    ValueError
        If the provider is unsupported or required fields are missing.
    """
    raw = raw or {}
    provider = raw.get("provider", "ollama")
    if provider not in ("ollama", "openai"):
        msg = f"Unsupported embedding provider: {provider!r}. Use 'ollama' or 'openai'."
        raise ValueError(msg)

    model = raw.get("model", DEFAULT_MODEL if provider == "ollama" else "")
    if not model:
        msg = "Embedding config requires 'model' field."
        raise ValueError(msg)

    api_key_env = raw.get("api_key_env", "")
    if provider == "openai" and not api_key_env:
        msg = "Embedding config requires 'api_key_env' field for provider 'openai'."
        raise ValueError(msg)

    default_url = DEFAULT_OLLAMA_URL if provider == "ollama" else DEFAULT_OPENAI_URL
    base_url = str(raw.get("base_url", default_url)).rstrip("/")

    backoff = _number(raw, "retry_backoff_s", DEFAULT_RETRY_BACKOFF_S)
    if backoff < 0:
        msg = f"Embedding config 'retry_backoff_s' cannot be negative: {backoff!r}"
        raise ValueError(msg)

    return EmbeddingConfig(
        provider=provider,
        model=str(model),
        base_url=base_url,
        api_key_env=api_key_env,
        timeout=_number(raw, "timeout", 60.0),
        max_retries=_non_negative_int(raw, "max_retries", DEFAULT_MAX_RETRIES),
        retry_backoff_s=backoff,
        cache_size=_non_negative_int(raw, "cache_size", DEFAULT_CACHE_SIZE),
    )


def _http_client(config: EmbeddingConfig) -> httpx.Client:
    # Transport-level retries only cover failed connection attempts.
    return httpx.Client(
        timeout=config.timeout,
        transport=httpx.HTTPTransport(retries=config.max_retries),
    )


def _check_response(provider: str, response: httpx.Response) -> None:
    if response.status_code != 200:
        msg = f"{provider} API error {response.status_code}: {response.text}"
        transient = response.status_code == 429 or response.status_code >= 500
        raise EmbeddingError(msg, transient=transient)


def _as_vectors(items: Any, expected: int) -> list[list[float]]:
    if not isinstance(items, list) or len(items) != expected:
        msg = f"Embedding API returned {len(items) if isinstance(items, list) else 0} vectors, expected {expected}."
        raise EmbeddingError(msg)
    if not all(isinstance(vec, list) and vec for vec in items):
        msg = "Embedding API returned an empty or malformed vector."
        raise EmbeddingError(msg)
    return [[float(v) for v in vec] for vec in items]


class OllamaEmbeddingService:
    """``EmbeddingService`` talking to Ollama's ``/api/embed`` endpoint."""

    def __init__(self, config: EmbeddingConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._client = client or _http_client(config)

    def generate_embedding(self, text: str) -> list[float]:
        return self.generate_embeddings([text])[0]

    def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in one request.

        Raises
        ------
        EmbeddingError
            On transport errors, non-200 responses or malformed payloads.
        """
        if not texts:
            return []
        try:
            response = self._client.post(
                f"{self._config.base_url}/api/embed",
                json={"model": self._config.model, "input": list(texts)},
            )
        except httpx.HTTPError as exc:
            msg = f"Ollama request failed: {exc}"
            raise EmbeddingError(msg, transient=True) from exc

        _check_response("Ollama", response)
        data = response.json()
        return _as_vectors(data.get("embeddings"), len(texts))

    def close(self) -> None:
        self._client.close()


class OpenAIEmbeddingService:
    """``EmbeddingService`` for OpenAI-compatible ``/embeddings`` endpoints."""

    def __init__(self, config: EmbeddingConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._client = client or _http_client(config)

    def _api_key(self) -> str:
        key = os.environ.get(self._config.api_key_env, "")
        if not key:
            msg = f"API key not found. Set environment variable: {self._config.api_key_env}"
            raise EmbeddingError(msg)
        return key

    def generate_embedding(self, text: str) -> list[float]:
        return self.generate_embeddings([text])[0]

    def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = self._client.post(
                f"{self._config.base_url}/embeddings",
                headers={
                    "Authorization": f"Bearer {self._api_key()}",
                    "Content-Type": "application/json",
                },
                json={"model": self._config.model, "input": list(texts)},
            )
        except httpx.HTTPError as exc:
            msg = f"OpenAI request failed: {exc}"
            raise EmbeddingError(msg, transient=True) from exc

        _check_response("OpenAI", response)
        data = sorted(response.json().get("data", []), key=lambda d: d.get("index", 0))
        return _as_vectors([d.get("embedding") for d in data], len(texts))

    def close(self) -> None:
        self._client.close()


class ResilientEmbeddingService:
    """Retry transient failures of *inner* and cache vectors by content hash.

    Retries use exponential backoff (``backoff_s``, doubled per attempt).
    The cache is an LRU of at most ``cache_size`` vectors; 0 disables it.
    """

    def __init__(
        self,
        inner: EmbeddingService,
        *,
        model: str = "",
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_s: float = DEFAULT_RETRY_BACKOFF_S,
        cache_size: int = DEFAULT_CACHE_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.inner = inner
        self._model = model
        self._max_retries = max_retries
        self._backoff_s = backoff_s
        self._cache_size = cache_size
        self._sleep = sleep
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._lock = threading.Lock()

    def _key(self, text: str) -> str:
        return hashlib.sha256(f"{self._model}\0{text}".encode()).hexdigest()

    def _cached(self, key: str) -> list[float] | None:
        with self._lock:
            vector = self._cache.get(key)
            if vector is not None:
                self._cache.move_to_end(key)
            return vector

    def _store(self, key: str, vector: list[float]) -> None:
        if self._cache_size <= 0:
            return
        with self._lock:
            self._cache[key] = vector
            self._cache.move_to_end(key)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

    def _with_retry(self, texts: list[str]) -> list[list[float]]:
        attempt = 0
        while True:
            try:
                return self.inner.generate_embeddings(texts)
            except EmbeddingError as exc:
                if not exc.transient or attempt >= self._max_retries:
                    raise
                delay = self._backoff_s * (2**attempt)
                attempt += 1
                logger.warning(
                    "Embedding request failed (attempt %d/%d), retrying in %.2fs: %s",
                    attempt,
                    self._max_retries + 1,
                    delay,
                    exc,
                )
                self._sleep(delay)

    def generate_embedding(self, text: str) -> list[float]:
        return self.generate_embeddings([text])[0]

    def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, sending only cache misses to the inner service."""
        if not texts:
            return []
        keys = [self._key(t) for t in texts]
        vectors: list[list[float] | None] = [self._cached(k) for k in keys]
        missing = [i for i, v in enumerate(vectors) if v is None]
        if missing:
            fresh = self._with_retry([texts[i] for i in missing])
            for i, vector in zip(missing, fresh):
                vectors[i] = vector
                self._store(keys[i], vector)
        return [v for v in vectors if v is not None]

    def close(self) -> None:
        close = getattr(self.inner, "close", None)
        if close is not None:
            close()


def create_embedding_service(
    config: EmbeddingConfig,
    client: httpx.Client | None = None,
) -> ResilientEmbeddingService:
    """Build the client for the configured provider, wrapped with retries and a cache."""
    logger.debug("Using %s embeddings (model %s)", config.provider, config.model)
    inner: OllamaEmbeddingService | OpenAIEmbeddingService
    if config.provider == "openai":
        inner = OpenAIEmbeddingService(config, client)
    else:
        inner = OllamaEmbeddingService(config, client)
    return ResilientEmbeddingService(
        inner,
        model=config.model,
        max_retries=config.max_retries,
        backoff_s=config.retry_backoff_s,
        cache_size=config.cache_size,
    )
