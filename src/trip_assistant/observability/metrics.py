"""Prometheus metrics for Trip Assistant.

Cardinality rule: user_id and project_id are NOT Prometheus labels (unbounded).
tool_name, status, reason, pattern and cache name are labels (bounded).
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Lazy-load prometheus_client to allow graceful degradation
_prom = None


def _get_prom():
    """Lazily import prometheus_client."""
    global _prom
    if _prom is None:
        try:
            import prometheus_client
            _prom = prometheus_client
        except ImportError:
            logger.warning("prometheus_client not installed; metrics disabled")
            _prom = False
    return _prom if _prom else None


# --- Metric singletons (created on first access) ---

_metrics = {}


def _metric(name, metric_type, description, labelnames=()):
    """Get or create a Prometheus metric."""
    if name in _metrics:
        return _metrics[name]
    prom = _get_prom()
    if prom is None:
        _metrics[name] = None
        return None
    cls = getattr(prom, metric_type)
    m = cls(name, description, labelnames=labelnames)
    _metrics[name] = m
    return m


def chat_messages_total():
    return _metric(
        "trip_assistant_chat_messages_total",
        "Counter",
        "Total chat messages by outcome",
        labelnames=["status"],
    )


def rate_limited_total():
    return _metric(
        "trip_assistant_rate_limited_total",
        "Counter",
        "Chat messages rejected by usage limits",
        labelnames=["reason"],
    )


def content_filtered_total():
    return _metric(
        "trip_assistant_content_filtered_total",
        "Counter",
        "Chat messages rejected by the prompt injection filter",
        labelnames=["pattern"],
    )


def tool_calls_total():
    return _metric(
        "trip_assistant_tool_calls_total",
        "Counter",
        "Total function-calling tool invocations",
        labelnames=["tool_name", "status"],
    )


def tool_call_duration():
    return _metric(
        "trip_assistant_tool_call_duration_seconds",
        "Histogram",
        "Tool call duration in seconds",
        labelnames=["tool_name", "status"],
    )


def cache_hits_total():
    return _metric(
        "trip_assistant_cache_hits_total",
        "Counter",
        "Total cache hits",
        labelnames=["cache"],
    )


def cache_misses_total():
    return _metric(
        "trip_assistant_cache_misses_total",
        "Counter",
        "Total cache misses",
        labelnames=["cache"],
    )


# --- Helper functions for recording metrics ---

def record_chat_message(status: str):
    m = chat_messages_total()
    if m:
        m.labels(status=status).inc()


def record_rate_limited(reason: str):
    m = rate_limited_total()
    if m:
        m.labels(reason=reason).inc()


def record_content_filtered(pattern: str):
    m = content_filtered_total()
    if m:
        m.labels(pattern=pattern).inc()


def record_tool_call(tool_name: str, status: str, duration: float):
    tc = tool_calls_total()
    if tc:
        tc.labels(tool_name=tool_name, status=status).inc()
    tcd = tool_call_duration()
    if tcd:
        tcd.labels(tool_name=tool_name, status=status).observe(duration)


def record_cache_hit(cache: str):
    m = cache_hits_total()
    if m:
        m.labels(cache=cache).inc()


def record_cache_miss(cache: str):
    m = cache_misses_total()
    if m:
        m.labels(cache=cache).inc()


def generate_metrics_text() -> Optional[str]:
    """Generate Prometheus metrics text output."""
    prom = _get_prom()
    if prom is None:
        return None
    return prom.generate_latest().decode("utf-8")
