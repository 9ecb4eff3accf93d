"""
Utility modules for the sync service

Provides:
- logging: structured JSON / console logging
- metrics: Prometheus metrics publishing
- tracing: OpenTelemetry spans
- retry: async retry with exponential backoff
"""

__version__ = "1.0.0"
__all__ = ["logging", "metrics", "tracing", "retry"]
