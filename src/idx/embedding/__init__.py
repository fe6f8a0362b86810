"""Embedding: LiteLLM client, run-wide rate limiter, and the per-package pipeline."""

from idx.embedding.client import EmbeddingClient, classify
from idx.embedding.limiter import RateLimiter
from idx.embedding.pipeline import EmbeddingPipeline, EmbedReport, make_batches

__all__ = [
    "EmbedReport",
    "EmbeddingClient",
    "EmbeddingPipeline",
    "RateLimiter",
    "classify",
    "make_batches",
]
