"""
core/metrics.py -- In-process metrics registry, pushed as OTLP JSON.

Routes and the request middleware bump counters on a shared Metrics object
(stored on app.state by the lifespan). When METRICS_URL is set, the lifespan
runs report_forever(), which snapshots the registry every
METRICS_INTERVAL_SECONDS and posts one OTLP payload per metric.

Counters are cumulative for the life of the process; the backend computes
rates. Sync route handlers run in FastAPI's threadpool, so every mutation
takes the registry lock.

Layer rule: core/ is the kernel. No imports from api/, auth/, or pizza/.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from typing import Optional

import requests

logger = logging.getLogger("pizza.metrics")

GAUGE = "gauge"
SUM = "sum"

_TRACKED_METHODS = ("GET", "POST", "PUT", "DELETE")


def build_payload(name: str, value: float, metric_type: str, unit: str, source: str) -> dict:
    """One OTLP resourceMetrics document carrying a single data point.

    Integers are sent as asInt, anything else as asDouble. Sums are
    cumulative and monotonic.
    """
    point: dict = {
        "timeUnixNano": time.time_ns(),
        "attributes": [{"key": "source", "value": {"stringValue": source}}],
    }
    if isinstance(value, int) and not isinstance(value, bool):
        point["asInt"] = value
    else:
        point["asDouble"] = float(value)

    body: dict = {"dataPoints": [point]}
    if metric_type == SUM:
        body["aggregationTemporality"] = "AGGREGATION_TEMPORALITY_CUMULATIVE"
        body["isMonotonic"] = True

    return {
        "resourceMetrics": [
            {"scopeMetrics": [{"metrics": [{"name": name, "unit": unit, metric_type: body}]}]}
        ]
    }


def cpu_usage_percent() -> int:
    """One-minute load average as a percentage of available cores."""
    try:
        load = os.getloadavg()[0]
    except (AttributeError, OSError):
        return 0
    return round(100 * load / (os.cpu_count() or 1))


def memory_usage_percent() -> int:
    """Share of physical memory in use, from sysconf page counts."""
    try:
        total = os.sysconf("SC_PHYS_PAGES")
        free = os.sysconf("SC_AVPHYS_PAGES")
    except (AttributeError, ValueError, OSError):
        return 0
    if total <= 0:
        return 0
    return round(100 * (total - free) / total)


class Metrics:
    """Counter and gauge registry for HTTP, auth and order activity.

    Usage:
        metrics = Metrics(url=settings.metrics_url, source="jwt-pizza-service", api_key="...")
        metrics.track_request("GET", 12.5)
        metrics.record_auth(success=True)
        metrics.push_all()
    """

    def __init__(self, url: str = "", source: str = "", api_key: str = "", timeout: float = 5.0) -> None:
        self.url = url
        self.source = source
        self.timeout = timeout
        self._lock = threading.Lock()
        self._session: Optional[requests.Session] = None
        if url:
            self._session = requests.Session()
            self._session.headers.update(
                {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
            )
        self.clear()

    # --- recording -------------------------------------------------------------

    def track_request(self, method: str, latency_ms: float) -> None:
        method = method.upper()
        with self._lock:
            self.requests_total += 1
            self.request_latency_sum += latency_ms
            if method in self.requests_by_method:
                self.requests_by_method[method] += 1

    def record_auth(self, success: bool) -> None:
        with self._lock:
            if success:
                self.auth_success += 1
            else:
                self.auth_failure += 1

    def add_active_user(self, user_id: int) -> None:
        with self._lock:
            self.active_users.add(user_id)

    def remove_active_user(self, user_id: int) -> None:
        with self._lock:
            self.active_users.discard(user_id)

    def record_order(self, pizzas: int, revenue: float, latency_ms: float) -> None:
        """A successfully fulfilled order. Revenue is accumulated in cents."""
        with self._lock:
            self.pizzas_sold += pizzas
            self.revenue_cents += round(revenue * 100)
            self.pizza_latency_sum += latency_ms
            self.pizza_latency_count += 1

    def record_order_failure(self, latency_ms: float) -> None:
        with self._lock:
            self.pizza_creation_failures += 1
            self.pizza_latency_sum += latency_ms
            self.pizza_latency_count += 1

    def clear(self) -> None:
        with self._lock:
            self.requests_total = 0
            self.request_latency_sum = 0.0
            self.requests_by_method = {m: 0 for m in _TRACKED_METHODS}
            self.auth_success = 0
            self.auth_failure = 0
            self.active_users: set[int] = set()
            self.pizzas_sold = 0
            self.pizza_creation_failures = 0
            self.revenue_cents = 0
            self.pizza_latency_sum = 0.0
            self.pizza_latency_count = 0

    # --- reporting -------------------------------------------------------------

    def snapshot(self) -> list[tuple[str, float, str, str]]:
        """(name, value, type, unit) for every reported metric, taken under the lock."""
        with self._lock:
            rows = [
                ("http.requests.total", self.requests_total, SUM, "1"),
                ("http.requests.latency.sum", round(self.request_latency_sum), SUM, "ms"),
            ]
            rows += [
                (f"http.requests.{m.lower()}.count", n, SUM, "1")
                for m, n in self.requests_by_method.items()
            ]
            rows += [
                ("auth.attempts.success", self.auth_success, SUM, "1"),
                ("auth.attempts.failure", self.auth_failure, SUM, "1"),
                ("auth.users.active", len(self.active_users), GAUGE, "1"),
                ("order.pizzas.sold", self.pizzas_sold, SUM, "1"),
                ("order.pizza.creation.failures", self.pizza_creation_failures, SUM, "1"),
                ("order.revenue.total_cents", self.revenue_cents, SUM, "1"),
                ("order.pizza.creation.latency.sum", round(self.pizza_latency_sum), SUM, "ms"),
                ("order.pizza.creation.count", self.pizza_latency_count, SUM, "1"),
            ]
        rows.insert(0, ("system.memory.usage", memory_usage_percent(), GAUGE, "%"))
        rows.insert(0, ("system.cpu.usage", cpu_usage_percent(), GAUGE, "%"))
        return rows

    def push_all(self) -> int:
        """POST every metric to the collector. Returns the number accepted.

        Failures are logged per metric and never raised; a down collector must
        not take the reporter loop with it.
        """
        if self._session is None:
            return 0
        accepted = 0
        for name, value, metric_type, unit in self.snapshot():
            payload = build_payload(name, value, metric_type, unit, self.source)
            try:
                resp = self._session.post(self.url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                logger.warning("Error pushing metric %s: %s", name, e)
                continue
            if resp.ok:
                accepted += 1
            else:
                logger.warning("Failed to push metric %s: HTTP %d", name, resp.status_code)
        return accepted

    async def report_forever(self, interval_seconds: float) -> None:
        """Push on a fixed interval until cancelled."""
        logger.info("Reporting metrics to %s every %ss", self.url, interval_seconds)
        while True:
            await asyncio.to_thread(self.push_all)
            await asyncio.sleep(interval_seconds)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
