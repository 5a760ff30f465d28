"""
Metrics collection for admission control.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from shopguard.core.logging import logger

EVENTS = ("admitted", "rejected", "denied", "bypassed", "degraded")


class RateLimitMetrics:
    """
    In-process counters for gate decisions.

    Tracks, totals and per rule:
    - admitted / rejected requests
    - denied (deny-listed) and bypassed (allow-listed or disabled) requests
    - degraded admissions, granted because the counter store failed

    The admin stats endpoint exposes ``get_metrics()``. Counters are per
    process; aggregate across workers in the scraping system.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics: Dict[str, Any] = {}
        self.reset_metrics()

    def record(self, event: str, rule: Optional[str] = None) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown rate limit event: {event}")
        with self._lock:
            self._metrics["totals"][event] += 1
            if rule is not None:
                per_rule = self._metrics["rules"].setdefault(rule, {e: 0 for e in EVENTS})
                per_rule[event] += 1

    def record_admitted(self, rule: str) -> None:
        self.record("admitted", rule)

    def record_rejected(self, rule: str) -> None:
        self.record("rejected", rule)

    def record_denied(self) -> None:
        self.record("denied")

    def record_bypassed(self) -> None:
        self.record("bypassed")

    def record_degraded(self, rule: Optional[str] = None) -> None:
        """Counter store failure; the request was admitted anyway."""
        self.record("degraded", rule)
        logger.debug("rate_limit_degraded_recorded", rule=rule)

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "totals": dict(self._metrics["totals"]),
                "rules": {name: dict(counts) for name, counts in self._metrics["rules"].items()},
                "uptime": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self._metrics = {"totals": {e: 0 for e in EVENTS}, "rules": {}}
