"""Tests for docweave.infrastructure.embeddings."""

from __future__ import annotations

import json

import httpx
import pytest

from docweave.infrastructure.embeddings import (
    EmbeddingConfig,
    EmbeddingError,
    OllamaEmbeddingService,
    OpenAIEmbeddingService,
    ResilientEmbeddingService,
    create_embedding_service,
    parse_embedding_config,
)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestParseEmbeddingConfig:
    def test_defaults_to_local_ollama(self) -> None:
        cfg = parse_embedding_config(None)
        assert cfg.provider == "ollama"
        assert cfg.model == "nomic-embed-text"
        assert cfg.base_url == "http://localhost:11434"

    def test_openai_requires_key_env(self) -> None:
        with pytest.raises(ValueError, match="api_key_env"):
            parse_embedding_config({"provider": "openai", "model": "text-embedding-3-small"})

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unsupported"):
            parse_embedding_config({"provider": "cohere"})

    def test_bad_timeout(self) -> None:
        with pytest.raises(ValueError, match="timeout"):
            parse_embedding_config({"timeout": "soon"})

    def test_trailing_slash_stripped(self) -> None:
        assert parse_embedding_config({"base_url": "http://gpu:11434/"}).base_url == "http://gpu:11434"


class TestOllama:
    def test_batch_request(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2], [0.3, 0.4]]})

        service = OllamaEmbeddingService(parse_embedding_config(None), client=_client(handler))
        vectors = service.generate_embeddings(["a", "b"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        assert seen["url"] == "http://localhost:11434/api/embed"
        assert seen["body"] == {"model": "nomic-embed-text", "input": ["a", "b"]}

    def test_http_error_status(self) -> None:
        service = OllamaEmbeddingService(
            parse_embedding_config(None),
            client=_client(lambda r: httpx.Response(500, text="model not loaded")),
        )
        with pytest.raises(EmbeddingError, match="500"):
            service.generate_embedding("x")

    def test_vector_count_mismatch(self) -> None:
        service = OllamaEmbeddingService(
            parse_embedding_config(None),
            client=_client(lambda r: httpx.Response(200, json={"embeddings": [[1.0]]})),
        )
        with pytest.raises(EmbeddingError, match="expected 2"):
            service.generate_embeddings(["a", "b"])

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        service = OllamaEmbeddingService(parse_embedding_config(None), client=_client(handler))
        with pytest.raises(EmbeddingError, match="request failed"):
            service.generate_embedding("x")

    def test_empty_input(self) -> None:
        service = OllamaEmbeddingService(parse_embedding_config(None), client=_client(lambda r: httpx.Response(500)))
        assert service.generate_embeddings([]) == []


class TestOpenAI:
    _CONFIG = EmbeddingConfig(
        provider="openai",
        model="text-embedding-3-small",
        base_url="https://api.example.com/v1",
        api_key_env="DOCWEAVE_TEST_KEY",
    )

    def test_sorted_by_index_with_bearer(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DOCWEAVE_TEST_KEY", "sk-test")
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(
                200,
                json={"data": [{"index": 1, "embedding": [2.0]}, {"index": 0, "embedding": [1.0]}]},
            )

        service = OpenAIEmbeddingService(self._CONFIG, client=_client(handler))
        assert service.generate_embeddings(["a", "b"]) == [[1.0], [2.0]]
        assert seen == {"auth": "Bearer sk-test", "url": "https://api.example.com/v1/embeddings"}

    def test_missing_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DOCWEAVE_TEST_KEY", raising=False)
        service = OpenAIEmbeddingService(self._CONFIG, client=_client(lambda r: httpx.Response(200)))
        with pytest.raises(EmbeddingError, match="DOCWEAVE_TEST_KEY"):
            service.generate_embedding("x")

    def test_factory_selects_provider(self) -> None:
        client = _client(lambda r: httpx.Response(200))
        openai = create_embedding_service(self._CONFIG, client)
        ollama = create_embedding_service(parse_embedding_config(None), client)
        assert isinstance(openai, ResilientEmbeddingService)
        assert isinstance(openai.inner, OpenAIEmbeddingService)
        assert isinstance(ollama.inner, OllamaEmbeddingService)


class TestResilience:
    @staticmethod
    def _service(handler, **kwargs: object) -> tuple[ResilientEmbeddingService, list[float]]:
        delays: list[float] = []
        inner = OllamaEmbeddingService(parse_embedding_config(None), client=_client(handler))
        service = ResilientEmbeddingService(inner, sleep=delays.append, **kwargs)  # type: ignore[arg-type]
        return service, delays

    def test_retries_server_error_then_succeeds(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(503, text="warming up")
            return httpx.Response(200, json={"embeddings": [[0.5, 0.5]]})

        service, delays = self._service(handler, backoff_s=0.25)
        assert service.generate_embedding("x") == [0.5, 0.5]
        assert len(calls) == 2
        assert delays == [0.25]

    def test_retries_connect_error_then_succeeds(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"embeddings": [[1.0]]})

        service, _ = self._service(handler)
        assert service.generate_embedding("x") == [1.0]
        assert len(calls) == 2

    def test_backoff_doubles_until_attempts_exhausted(self) -> None:
        service, delays = self._service(lambda r: httpx.Response(429), max_retries=2, backoff_s=1.0)
        with pytest.raises(EmbeddingError, match="429") as excinfo:
            service.generate_embedding("x")
        assert excinfo.value.transient is True
        assert delays == [1.0, 2.0]

    def test_client_error_not_retried(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(400, text="bad input")

        service, delays = self._service(handler)
        with pytest.raises(EmbeddingError, match="400") as excinfo:
            service.generate_embedding("x")
        assert excinfo.value.transient is False
        assert len(calls) == 1
        assert delays == []

    def test_cache_sends_only_misses(self) -> None:
        inputs: list[list[str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            texts = json.loads(request.content)["input"]
            inputs.append(texts)
            return httpx.Response(200, json={"embeddings": [[float(len(t))] for t in texts]})

        service, _ = self._service(handler)
        assert service.generate_embeddings(["a", "bb"]) == [[1.0], [2.0]]
        assert service.generate_embeddings(["bb", "ccc"]) == [[2.0], [3.0]]
        assert service.generate_embedding("a") == [1.0]
        assert inputs == [["a", "bb"], ["ccc"]]

    def test_cache_evicts_least_recent(self) -> None:
        inputs: list[list[str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            texts = json.loads(request.content)["input"]
            inputs.append(texts)
            return httpx.Response(200, json={"embeddings": [[1.0] for _ in texts]})

        service, _ = self._service(handler, cache_size=1)
        service.generate_embedding("a")
        service.generate_embedding("b")
        service.generate_embedding("a")
        assert inputs == [["a"], ["b"], ["a"]]

    def test_config_keys(self) -> None:
        cfg = parse_embedding_config({"max_retries": 5, "retry_backoff_s": 2, "cache_size": 0})
        assert (cfg.max_retries, cfg.retry_backoff_s, cfg.cache_size) == (5, 2.0, 0)
        with pytest.raises(ValueError, match="max_retries"):
            parse_embedding_config({"max_retries": -1})
