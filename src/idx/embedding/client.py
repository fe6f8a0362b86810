"""LiteLLM embedding client with provider-error classification.

All embedding calls (indexing and search) route through this module. LiteLLM's
own retries are disabled (num_retries=0): the pipeline owns backoff and batch
splitting, and needs to see each failure to decide between them.
"""

from __future__ import annotations

import logging
from typing import Any

import litellm

from idx.config import EmbeddingCfg
from idx.embedding.limiter import RateLimiter
from idx.errors import EmbeddingError

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

_AUTH_ERRORS: tuple[type[Exception], ...] = (
    litellm.AuthenticationError,
    litellm.NotFoundError,
    litellm.PermissionDeniedError,
)
_INVALID_INPUT_ERRORS: tuple[type[Exception], ...] = (
    litellm.ContextWindowExceededError,
    litellm.BadRequestError,
)
_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.InternalServerError,
    litellm.ServiceUnavailableError,
    litellm.APIError,
    ConnectionError,
    TimeoutError,
)
_PROVIDER_ERRORS: tuple[type[Exception], ...] = (
    *_AUTH_ERRORS,
    litellm.RateLimitError,
    *_INVALID_INPUT_ERRORS,
    *_TRANSIENT_ERRORS,
)


def classify(exc: Exception) -> str:
    """Map a provider exception to an EmbeddingError kind."""
    if isinstance(exc, _AUTH_ERRORS):
        return "auth"
    if isinstance(exc, litellm.RateLimitError):
        return "rate_limited"
    if isinstance(exc, _INVALID_INPUT_ERRORS):
        return "invalid_input"
    return "transient"


class EmbeddingClient:
    """Thin wrapper around ``litellm.embedding()``.

    Args:
        cfg: Embedding section of the config (model, api_base, dimensions).
        api_key: Explicit key; None lets LiteLLM read the provider's env var.
        limiter: Shared run-wide limiter; None means unlimited.
    """

    def __init__(
        self,
        cfg: EmbeddingCfg,
        api_key: str | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.cfg = cfg
        self._api_key = api_key
        self._limiter = limiter

    @property
    def model(self) -> str:
        return self.cfg.model

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in input order.

        Raises:
            EmbeddingError: kind ``auth``, ``rate_limited``, ``invalid_input``
                or ``transient``.
        """
        if not texts:
            return []
        kwargs: dict[str, Any] = {
            "model": self.cfg.model,
            "input": texts,
            "num_retries": 0,
        }
        if self.cfg.api_base:
            kwargs["api_base"] = self.cfg.api_base
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self.cfg.dimensions:
            kwargs["dimensions"] = self.cfg.dimensions

        try:
            if self._limiter is not None:
                with self._limiter:
                    response = litellm.embedding(**kwargs)
            else:
                response = litellm.embedding(**kwargs)
        except _PROVIDER_ERRORS as exc:
            kind = classify(exc)
            logger.debug("embedding request of %d inputs failed (%s): %s", len(texts), kind, exc)
            raise EmbeddingError(f"{type(exc).__name__}: {exc}", kind) from exc

        data = list(response.data)
        if len(data) != len(texts):
            raise EmbeddingError(
                f"provider returned {len(data)} embeddings for {len(texts)} inputs", "transient"
            )
        return [list(item["embedding"]) for item in data]
