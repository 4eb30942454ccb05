"""
Request-scoped tracing for SafeRoute route planning.

Provides a TraceContext that records:
  - Per-stage timing (stage_name, start/end, elapsed_ms, api_calls, errors)
  - Per-outbound-call timing (service, endpoint, elapsed_ms, status, provider status)
  - End-of-request summary (total_elapsed, total_api_calls, outcome)

The current context lives in a ContextVar, so it is inherited by every
asyncio task spawned while handling the request (per-route analysis,
windowed image scoring).

Usage:
    from route_trace import TraceContext, get_trace, set_trace, clear_trace

    # In the request handler (app.py):
    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # In API clients:
    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import contextvars
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class APICallRecord:
    """One outbound call (Routes, Places, Street View, Gemini, OpenWeatherMap)."""
    service: str          # "google_routes" | "google_places" | "gemini" | ...
    endpoint: str         # "computeRoutes", "autocomplete", etc.
    elapsed_ms: int
    status_code: int
    provider_status: str = ""   # e.g. "cache_hit", "stale_cache", "TIMEOUT"
    stage: str = ""             # which planning stage was running


@dataclass
class StageRecord:
    """One planning stage (resolve, routes, imagery, analysis, ...)."""
    stage_name: str
    start_ts: float = 0.0
    end_ts: float = 0.0
    elapsed_ms: int = 0
    api_calls_made: int = 0
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single planning request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    _current_stage: str = ""

    # ------------------------------------------------------------------
    # Stage lifecycle
    # ------------------------------------------------------------------

    def start_stage(self, name: str):
        self._current_stage = name

    def end_stage(self):
        self._current_stage = ""

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        api_in_stage = sum(1 for c in self.api_calls if c.stage == stage_name)
        rec = StageRecord(
            stage_name=stage_name,
            start_ts=start_ts,
            end_ts=end_ts,
            elapsed_ms=int((end_ts - start_ts) * 1000),
            api_calls_made=api_in_stage,
            error_class=error_class,
            error_message=error_message,
        )
        self.stages.append(rec)

        status = "ERR" if error_class else "OK"
        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms api_calls=%d%s",
            self.trace_id,
            stage_name,
            status,
            rec.elapsed_ms,
            api_in_stage,
            err_info,
        )

    # ------------------------------------------------------------------
    # API call recording
    # ------------------------------------------------------------------

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        rec = APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=int(elapsed_ms),
            status_code=status_code,
            provider_status=provider_status,
            stage=self._current_stage,
        )
        self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            self._current_stage or "-",
            service,
            endpoint,
            rec.elapsed_ms,
            status_code,
            provider_status,
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.request_start) * 1000)
        completed = [s for s in self.stages if not s.error_class]
        errored = [s for s in self.stages if s.error_class]

        if errored and not completed:
            outcome = "error"
        elif not completed:
            outcome = "empty"
        elif errored:
            outcome = "partial"
        else:
            outcome = "success"

        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": len(self.api_calls),
            "cache_hits": sum(1 for c in self.api_calls if c.provider_status == "cache_hit"),
            "stages_completed": len(completed),
            "stages_errored": len(errored),
            "final_outcome": outcome,
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d cache_hits=%d "
            "completed=%d errored=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["cache_hits"],
            s["stages_completed"],
            s["stages_errored"],
            s["final_outcome"],
        )


# =============================================================================
# Context-local storage
# =============================================================================

_current_trace: contextvars.ContextVar[Optional[TraceContext]] = contextvars.ContextVar(
    "route_trace", default=None
)


def get_trace() -> Optional[TraceContext]:
    """Get the current request's trace context, or None."""
    return _current_trace.get()


def set_trace(ctx: Optional[TraceContext]):
    _current_trace.set(ctx)


def clear_trace():
    _current_trace.set(None)


async def timed_stage(stage_name: str, awaitable: Awaitable[T]) -> T:
    """Await *awaitable* with timing. Logs duration and re-raises on failure."""
    trace = get_trace()
    if trace:
        trace.start_stage(stage_name)
    t0 = time.time()
    try:
        result = await awaitable
    except Exception as exc:
        t1 = time.time()
        if trace:
            trace.record_stage(
                stage_name, t0, t1,
                error_class=type(exc).__name__,
                error_message=str(exc)[:200],
            )
            trace.end_stage()
        else:
            logger.warning("  [stage] %s FAILED (%.1fs)", stage_name, t1 - t0, exc_info=True)
        raise
    t1 = time.time()
    if trace:
        trace.record_stage(stage_name, t0, t1)
        trace.end_stage()
    else:
        logger.info("  [stage] %s OK (%.1fs)", stage_name, t1 - t0)
    return result
