"""Batched embedding generation via litellm.

Every request carries ``{model, input, dimensions?}``; the provider's
``data`` list is re-sorted by ``index`` before use so output order always
matches input order, whatever order the provider answered in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import litellm
import structlog

from ragline.errors import DimensionMismatchError, EmbeddingProviderError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_BATCH_SIZE = 100

# Provider conditions that will not change on retry.
_PERMANENT_STATUS = frozenset({400, 401, 403, 404, 422})
_PERMANENT_MARKERS = ("invalid model", "model not found", "does not exist")


@dataclass
class EmbeddingUsage:
    prompt_tokens: int = 0
    total_tokens: int = 0
    requests: int = 0


class Embedder:
    """Turn texts into vectors with one provider call per batch.

    Args:
        model: litellm embedding model string (provider/model format).
        batch_size: Max texts per provider request.
        dimensions: Expected vector length. Sent to the provider and checked on
            every returned vector when set.
        embed_fn: Provider call with ``litellm.embedding``'s signature.
            Defaults to ``litellm.embedding``.
        num_retries: Transport retries litellm performs inside one request.
    """

    def __init__(
        self,
        model: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dimensions: int | None = None,
        embed_fn: Callable[..., Any] | None = None,
        num_retries: int = 2,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model = model
        self.batch_size = batch_size
        self.dimensions = dimensions
        self.num_retries = num_retries
        self._embed_fn = embed_fn or litellm.embedding
        self.usage = EmbeddingUsage()

    def embed(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in input order.

        Raises:
            EmbeddingProviderError: Provider failure or malformed response body.
            DimensionMismatchError: A vector's length differs from ``dimensions``.
        """
        if not texts:
            return []

        model = model or self.model
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self.batch_size):
            batch = texts[offset : offset + self.batch_size]
            vectors.extend(self._embed_batch(batch, model))
            logger.debug(
                "embedding_batch",
                model=model,
                batch_start=offset,
                batch_size=len(batch),
            )
        return vectors

    def embed_one(self, text: str, model: str | None = None) -> list[float]:
        return self.embed([text], model=model)[0]

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    def _embed_batch(self, batch: list[str], model: str) -> list[list[float]]:
        kwargs: dict[str, Any] = {
            "model": model,
            "input": batch,
            "num_retries": self.num_retries,
        }
        if self.dimensions is not None:
            kwargs["dimensions"] = self.dimensions

        try:
            response = self._embed_fn(**kwargs)
        except EmbeddingProviderError:
            raise
        except Exception as exc:
            raise classify_provider_error(exc) from exc

        self.usage.requests += 1
        self._record_usage(response)
        return self._parse_response(response, expected=len(batch))

    def _parse_response(self, response: Any, expected: int) -> list[list[float]]:
        data = _get(response, "data")
        if not isinstance(data, list):
            raise EmbeddingProviderError("response has no 'data' list")
        if len(data) != expected:
            raise EmbeddingProviderError(
                f"expected {expected} embeddings, got {len(data)}"
            )

        indexed: list[tuple[int, list[float]]] = []
        for position, item in enumerate(data):
            vector = _get(item, "embedding")
            if not isinstance(vector, list) or not vector:
                raise EmbeddingProviderError(f"item {position} has no embedding")
            index = _get(item, "index")
            indexed.append((index if isinstance(index, int) else position, vector))

        indexed.sort(key=lambda pair: pair[0])
        if [i for i, _ in indexed] != list(range(expected)):
            raise EmbeddingProviderError("response indices do not cover the request")

        vectors = [vector for _, vector in indexed]
        if self.dimensions is not None:
            for vector in vectors:
                if len(vector) != self.dimensions:
                    raise DimensionMismatchError(self.dimensions, len(vector))
        return vectors

    def _record_usage(self, response: Any) -> None:
        usage = _get(response, "usage")
        if usage is None:
            return
        self.usage.prompt_tokens += int(_get(usage, "prompt_tokens") or 0)
        self.usage.total_tokens += int(_get(usage, "total_tokens") or 0)


def classify_provider_error(exc: Exception) -> EmbeddingProviderError:
    """Map a provider/transport exception to a retryable or permanent error."""
    status = getattr(exc, "status_code", None)
    status = status if isinstance(status, int) else None
    message = str(exc) or type(exc).__name__

    if isinstance(exc, (litellm.Timeout, litellm.APIConnectionError, TimeoutError, ConnectionError)):
        return EmbeddingProviderError(message, status, retryable=True)
    if status in _PERMANENT_STATUS:
        return EmbeddingProviderError(message, status, retryable=False)
    if any(marker in message.lower() for marker in _PERMANENT_MARKERS):
        return EmbeddingProviderError(message, status, retryable=False)
    return EmbeddingProviderError(message, status, retryable=True)


def _get(obj: Any, name: str) -> Any:
    """Read *name* from a dict or an attribute-style response object."""
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)
