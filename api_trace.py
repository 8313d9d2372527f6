"""
Request-scoped tracing of outbound backend calls.

Provides a thread-local TraceContext that records:
  - Per-call timing (service, endpoint, elapsed_ms, HTTP status)
  - End-of-request summary (total_elapsed, total_api_calls, failures)

Usage:
    from api_trace import TraceContext, get_trace, set_trace, clear_trace

    # In the request handler (app.py):
    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # In the backend client (supabase_client._request):
    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import time
import threading
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any

logger = logging.getLogger(__name__)


@dataclass
class APICallRecord:
    """One outbound HTTP call."""
    service: str          # "supabase"
    endpoint: str         # table or view name, e.g. "places"
    method: str
    elapsed_ms: int
    status_code: int      # 0 when no response arrived


@dataclass
class TraceContext:
    """Accumulates call timings for a single request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    api_calls: List[APICallRecord] = field(default_factory=list)

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        method: str,
        elapsed_ms: int,
        status_code: int,
    ):
        self.api_calls.append(APICallRecord(
            service=service,
            endpoint=endpoint,
            method=method,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
        ))
        logger.info(
            "  [api] trace=%s svc=%s %s %s ms=%d http=%d",
            self.trace_id, service, method, endpoint, elapsed_ms, status_code,
        )

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.request_start) * 1000)
        failed = [c for c in self.api_calls if not 200 <= c.status_code < 300]
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": len(self.api_calls),
            "failed_api_calls": len(failed),
            "api_elapsed_ms": sum(c.elapsed_ms for c in self.api_calls),
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d failed=%d api_ms=%d",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["failed_api_calls"],
            s["api_elapsed_ms"],
        )


_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current request's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None
