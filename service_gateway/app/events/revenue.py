"""
Fire-and-forget revenue event emission.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import Request

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..auth.tokens import Identity


RevenueSink = Callable[[Dict[str, Any]], None]


@dataclass(frozen=True)
class RequestMeta:
    """Request details attached to revenue events."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    path: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            ip = forwarded_for.split(",")[0].strip()
        else:
            ip = request.client.host if request.client else None
        return cls(ip=ip, user_agent=request.headers.get("User-Agent"), path=request.url.path)


class RevenueEventLogger:
    """Builds revenue events and hands them to every sink.

    A failing sink is logged and skipped; ``record`` never raises.
    """

    def __init__(self, sinks: Optional[List[RevenueSink]] = None, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("gateway.revenue")
        self.metrics = metrics
        self.sinks: List[RevenueSink] = list(sinks) if sinks is not None else [self._log_sink]

    def add_sink(self, sink: RevenueSink) -> None:
        self.sinks.append(sink)

    def record(self, event_type: str, identity: Optional[Identity], request_meta: Optional[RequestMeta] = None,
               **extra: Any) -> Optional[Dict[str, Any]]:
        try:
            meta = request_meta or RequestMeta()
            event = {
                "type": event_type,
                "user_id": identity.subject if identity else None,
                "plan": identity.plan.value if identity else None,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "ip": meta.ip,
                "user_agent": meta.user_agent,
                "path": meta.path,
            }
            event.update(extra)
        except Exception as exc:
            self.logger.warning("Revenue event could not be built", event_type=event_type, error=str(exc))
            return None

        for sink in self.sinks:
            try:
                sink(event)
            except Exception as exc:
                self.logger.warning(
                    "Revenue event sink failed",
                    event_type=event_type,
                    sink=getattr(sink, "__name__", repr(sink)),
                    error=str(exc),
                )

        if self.metrics is not None:
            try:
                self.metrics.record_business_event(event_type)
            except Exception as exc:
                self.logger.warning("Revenue event metric failed", event_type=event_type, error=str(exc))

        return event

    def _log_sink(self, event: Dict[str, Any]) -> None:
        fields = {key: value for key, value in event.items() if key not in ("type", "timestamp")}
        self.logger.info("Revenue event", event_type=event["type"], occurred_at=event["timestamp"], **fields)
