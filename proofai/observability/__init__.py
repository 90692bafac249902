"""
Observability module - Logging, Metrics, and Tracing.
"""

from proofai.observability.logging import get_logger, log_context, setup_logging
from proofai.observability.metrics import metrics
from proofai.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
