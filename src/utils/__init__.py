"""Utility modules."""

from src.utils.logger import bind_context, get_logger, mask_secret, unbind_context
from src.utils.tracing import get_tracer, init_tracing, shutdown_tracing

__all__ = [
    "bind_context",
    "get_logger",
    "mask_secret",
    "unbind_context",
    "get_tracer",
    "init_tracing",
    "shutdown_tracing",
]
