"""Embedding clients: local sentence-transformers and OpenAI-compatible HTTP."""

import contextlib
import io
import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests

from tooldex.config import (
    EMBEDDING_API_DIMENSIONS,
    EMBEDDING_API_INITIAL_BACKOFF,
    EMBEDDING_API_KEY_ENV,
    EMBEDDING_API_MAX_BACKOFF,
    EMBEDDING_API_MAX_RETRIES,
    EMBEDDING_API_MODEL,
    EMBEDDING_API_TIMEOUT,
    EMBEDDING_API_URL,
    EMBEDDING_BACKEND,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_DEVICE,
    EMBEDDING_LOCAL_FILES_ONLY,
    EMBEDDING_MODEL,
    EMBEDDING_NORMALIZE,
)

logger = logging.getLogger(__name__)
FALLBACK_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504}

try:
    from sentence_transformers import SentenceTransformer
except ImportError:
    SentenceTransformer = None  # type: ignore[assignment]


def _to_embedding_rows(encoded: Any) -> List[List[float]]:
    """Normalize model output to List[List[float]]."""
    rows = encoded.tolist() if hasattr(encoded, "tolist") else encoded
    if rows is None:
        return []
    if isinstance(rows, tuple):
        rows = list(rows)
    if not isinstance(rows, list):
        return []
    if rows and isinstance(rows[0], (int, float)):
        rows = [rows]
    normalized: List[List[float]] = []
    for row in rows:
        if not isinstance(row, (list, tuple)):
            continue
        normalized.append([float(value) for value in row])
    return normalized


class EmbeddingClient:
    """sentence-transformers client with lazy, cache-first model loading.

    ``model`` names the model that produced the vectors. When the configured
    model cannot be loaded the client falls back to a small public model and
    updates ``model`` accordingly, so callers should read it after ``load()``.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
        device: Optional[str] = None,
        normalize_embeddings: Optional[bool] = None,
        local_files_only: Optional[bool] = None,
    ):
        self.model = model or EMBEDDING_MODEL
        self.batch_size = batch_size or EMBEDDING_BATCH_SIZE
        self.device = device or EMBEDDING_DEVICE
        self.normalize_embeddings = (
            EMBEDDING_NORMALIZE
            if normalize_embeddings is None
            else bool(normalize_embeddings)
        )
        self.local_files_only = (
            EMBEDDING_LOCAL_FILES_ONLY
            if local_files_only is None
            else bool(local_files_only)
        )

        self._model: Optional[Any] = None
        self._model_load_error: Optional[Exception] = None

        # Usage tracking
        self.texts_embedded: int = 0
        self.api_calls: int = 0

        logger.debug(
            "EmbeddingClient initialized: model=%s, device=%s",
            self.model,
            self.device,
        )

    def _load_sentence_transformer(
        self, model_name: str, local_files_only: bool
    ) -> Any:
        kwargs = {"device": self.device}
        if local_files_only:
            kwargs["local_files_only"] = True
        captured_stdout = io.StringIO()
        captured_stderr = io.StringIO()

        def _construct_model(active_kwargs: dict) -> Any:
            with _silence_process_output(captured_stdout, captured_stderr):
                return SentenceTransformer(model_name, **active_kwargs)

        try:
            return _construct_model(kwargs)
        except TypeError:
            kwargs.pop("local_files_only", None)
            return _construct_model(kwargs)

    def _load_model_with_cache_preference(self, model_name: str) -> Any:
        """Load from local cache first, then allow network download if configured."""
        try:
            model = self._load_sentence_transformer(
                model_name=model_name,
                local_files_only=True,
            )
            logger.debug(
                "Loaded embedding model '%s' from local Hugging Face cache.",
                model_name,
            )
            return model
        except Exception:
            if self.local_files_only:
                raise
            logger.debug(
                "Embedding model '%s' not available locally, attempting remote load.",
                model_name,
            )
            return self._load_sentence_transformer(
                model_name=model_name,
                local_files_only=False,
            )

    def load(self) -> Any:
        """Load the sentence-transformer lazily and cache it."""
        if self._model is not None:
            return self._model
        if self._model_load_error is not None:
            raise RuntimeError("Embedding model is unavailable") from self._model_load_error

        if SentenceTransformer is None:
            self._model_load_error = RuntimeError(
                "sentence-transformers is required for local embeddings. "
                "Install dependencies and retry."
            )
            raise RuntimeError("Embedding model is unavailable") from self._model_load_error

        configured_model = self.model
        try:
            self._model = self._load_model_with_cache_preference(configured_model)
        except Exception as primary_exc:
            if self.local_files_only or configured_model == FALLBACK_EMBEDDING_MODEL:
                self._model_load_error = primary_exc
                logger.error(
                    "Failed to load sentence-transformer model '%s': %s",
                    configured_model,
                    primary_exc,
                )
                raise RuntimeError("Embedding model is unavailable") from primary_exc

            logger.warning(
                "Failed to load embedding model '%s'. Falling back to '%s'.",
                configured_model,
                FALLBACK_EMBEDDING_MODEL,
            )
            try:
                self._model = self._load_model_with_cache_preference(
                    FALLBACK_EMBEDDING_MODEL
                )
            except Exception as fallback_exc:
                self._model_load_error = fallback_exc
                logger.error(
                    "Fallback embedding model '%s' also failed: %s",
                    FALLBACK_EMBEDDING_MODEL,
                    fallback_exc,
                )
                raise RuntimeError("Embedding model is unavailable") from fallback_exc
            self.model = FALLBACK_EMBEDDING_MODEL
            logger.info(
                "Loaded fallback embedding model '%s'. "
                "Update embedding.model to avoid repeated load failures.",
                self.model,
            )
        return self._model

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        model = self.load()
        encoded = model.encode(
            texts,
            batch_size=len(texts),
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=self.normalize_embeddings,
        )
        rows = _to_embedding_rows(encoded)

        self.api_calls += 1
        self.texts_embedded += len(texts)
        return rows

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a list of texts."""
        filtered_texts = [text for text in texts or [] if text and text.strip()]
        if not filtered_texts:
            return []

        all_embeddings: List[List[float]] = []
        for i in range(0, len(filtered_texts), self.batch_size):
            batch = filtered_texts[i : i + self.batch_size]
            all_embeddings.extend(self._embed_batch(batch))
        return all_embeddings

    def embed_single(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        result = self.embed([text])
        return result[0] if result else []

    def is_available(self) -> bool:
        """Check whether the embedding model is loadable."""
        try:
            self.load()
            return True
        except RuntimeError:
            return False

    def get_usage_stats(self) -> Dict[str, int]:
        return {
            "texts_embedded": self.texts_embedded,
            "api_calls": self.api_calls,
        }


class RemoteEmbeddingClient:
    """Client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        max_backoff: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = (api_url or EMBEDDING_API_URL).rstrip("/")
        self.model = model or EMBEDDING_API_MODEL
        self.api_key = api_key if api_key is not None else os.environ.get(
            EMBEDDING_API_KEY_ENV
        )
        self.dimensions = (
            EMBEDDING_API_DIMENSIONS if dimensions is None else int(dimensions)
        )
        self.timeout = timeout or EMBEDDING_API_TIMEOUT
        self.batch_size = batch_size or EMBEDDING_BATCH_SIZE
        self.max_retries = max(1, max_retries or EMBEDDING_API_MAX_RETRIES)
        self.initial_backoff = (
            EMBEDDING_API_INITIAL_BACKOFF if initial_backoff is None else initial_backoff
        )
        self.max_backoff = (
            EMBEDDING_API_MAX_BACKOFF if max_backoff is None else max_backoff
        )
        self.session = session or requests.Session()

        self.texts_embedded: int = 0
        self.api_calls: int = 0
        self.prompt_tokens: int = 0

        if not self.api_key:
            logger.info(
                "Warning: %s not found in environment variables.", EMBEDDING_API_KEY_ENV
            )

    def load(self) -> None:
        """Remote models need no local loading."""
        return None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_url}/embeddings"
        current_backoff = self.initial_backoff
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                resp = self.session.post(
                    url, json=payload, headers=self._headers(), timeout=self.timeout
                )
                resp.raise_for_status()
                return resp.json()
            except requests.exceptions.HTTPError as e:
                last_error = e
                status = e.response.status_code if e.response is not None else None
                if status not in RETRYABLE_STATUS_CODES:
                    raise
                logger.warning(
                    "Embedding request failed with %s (attempt %d/%d)",
                    status,
                    attempt + 1,
                    self.max_retries,
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                last_error = e
                logger.warning(
                    "Embedding request error: %s (attempt %d/%d)",
                    e,
                    attempt + 1,
                    self.max_retries,
                )

            if attempt + 1 < self.max_retries:
                time.sleep(current_backoff)
                current_backoff = min(current_backoff * 2, self.max_backoff)

        raise RuntimeError(
            f"Embedding request failed after {self.max_retries} attempts"
        ) from last_error

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        payload: Dict[str, Any] = {"model": self.model, "input": texts}
        if self.dimensions:
            payload["dimensions"] = self.dimensions
        data = self._post(payload)

        items = sorted(data.get("data", []), key=lambda item: item.get("index", 0))
        rows = [[float(v) for v in item.get("embedding", [])] for item in items]
        if len(rows) != len(texts):
            raise RuntimeError(
                f"Embedding response returned {len(rows)} vectors for {len(texts)} inputs"
            )

        usage = data.get("usage", {})
        self.api_calls += 1
        self.texts_embedded += len(texts)
        self.prompt_tokens += int(usage.get("prompt_tokens", 0) or 0)
        return rows

    def embed(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a list of texts."""
        filtered_texts = [text for text in texts or [] if text and text.strip()]
        if not filtered_texts:
            return []

        all_embeddings: List[List[float]] = []
        for i in range(0, len(filtered_texts), self.batch_size):
            all_embeddings.extend(self._embed_batch(filtered_texts[i : i + self.batch_size]))
        return all_embeddings

    def embed_single(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        result = self.embed([text])
        return result[0] if result else []

    def get_usage_stats(self) -> Dict[str, int]:
        return {
            "texts_embedded": self.texts_embedded,
            "api_calls": self.api_calls,
            "prompt_tokens": self.prompt_tokens,
        }


def create_embedding_client(backend: Optional[str] = None, **kwargs: Any):
    """Build the embedding client selected by ``embedding.backend``."""
    selected = (backend or EMBEDDING_BACKEND or "").strip().lower()
    if selected in ("openai", "remote", "api"):
        return RemoteEmbeddingClient(**kwargs)
    if selected in ("sentence_transformers", "sentence-transformers", "local"):
        return EmbeddingClient(**kwargs)
    raise ValueError(f"Unknown embedding backend: {backend or EMBEDDING_BACKEND}")


@contextlib.contextmanager
def _silence_process_output(
    captured_stdout: io.StringIO, captured_stderr: io.StringIO
):
    """Silence Python-level and native fd stdout/stderr during noisy model loads."""
    stdout_fd = os.dup(1)
    stderr_fd = os.dup(2)
    devnull_fd = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull_fd, 1)
        os.dup2(devnull_fd, 2)
        with contextlib.redirect_stdout(captured_stdout), contextlib.redirect_stderr(
            captured_stderr
        ):
            yield
    finally:
        os.dup2(stdout_fd, 1)
        os.dup2(stderr_fd, 2)
        os.close(stdout_fd)
        os.close(stderr_fd)
        os.close(devnull_fd)
