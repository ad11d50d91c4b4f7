"""
core/telemetry.py -- Log shipping to Grafana Loki.

Application code logs through the standard logging module only. When
LOGGING_URL is configured, install_log_shipping() attaches a QueueHandler to
the "pizza" logger; a QueueListener thread drains the queue into LokiHandler,
so a slow or unreachable Loki never blocks a request.

Every shipped line passes through sanitize() first: any JSON "password"
value is masked before it leaves the process.

Layer rule: core/ is the kernel. No imports from api/, auth/, or pizza/.
"""

from __future__ import annotations

import json
import logging
import queue
import re
import time
from logging.handlers import QueueHandler, QueueListener
from typing import Optional

import requests

_PASSWORD_RE = re.compile(r'"password":\s*"[^"]*"')

# Loki labels use these names, not Python's level names.
_LEVELS = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def sanitize(text: str) -> str:
    """Mask JSON password values: "password": "x" -> "password": "*****"."""
    return _PASSWORD_RE.sub('"password": "*****"', text)


def status_to_level(status_code: int) -> int:
    """Map an HTTP status to the log level used for the request line."""
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _now_ns() -> str:
    return str(time.time_ns())


class LokiHandler(logging.Handler):
    """Push each record to a Loki push endpoint as one stream value.

    The record's `log_type` attribute (pass extra={"log_type": "http"}) becomes
    the stream's `type` label; it defaults to "app". A structured payload in
    `log_data` (a dict) is shipped as JSON; otherwise the formatted message is.
    """

    def __init__(self, url: str, source: str, user_id: str, api_key: str, timeout: float = 5.0) -> None:
        super().__init__()
        self.url = url
        self.source = source
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(
            {"Content-Type": "application/json", "Authorization": f"Bearer {user_id}:{api_key}"}
        )

    def build_event(self, record: logging.LogRecord) -> dict:
        data = getattr(record, "log_data", None)
        line = json.dumps(data) if data is not None else self.format(record)
        return {
            "streams": [
                {
                    "stream": {
                        "component": self.source,
                        "level": _LEVELS.get(record.levelno, "info"),
                        "type": getattr(record, "log_type", "app"),
                    },
                    "values": [[_now_ns(), sanitize(line)]],
                }
            ]
        }

    def emit(self, record: logging.LogRecord) -> None:
        try:
            resp = self._session.post(self.url, json=self.build_event(record), timeout=self.timeout)
            if not resp.ok:
                # Print, don't log: logging here would loop back into this handler.
                print(f"Failed to send log to Grafana: HTTP {resp.status_code}")
        except requests.RequestException as e:
            print(f"Failed to send log to Grafana: {e}")

    def close(self) -> None:
        self._session.close()
        super().close()


def install_log_shipping(
    url: str, source: str, user_id: str, api_key: str, logger_name: str = "pizza"
) -> Optional[tuple[QueueListener, QueueHandler]]:
    """Attach Loki shipping to logger_name. Returns (listener, handler), or None when url is empty.

    The caller owns both and must pass them to uninstall_log_shipping() on shutdown.
    """
    if not url:
        return None
    log_queue: queue.Queue = queue.Queue(-1)
    listener = QueueListener(log_queue, LokiHandler(url, source, user_id, api_key), respect_handler_level=True)
    handler = QueueHandler(log_queue)
    logging.getLogger(logger_name).addHandler(handler)
    listener.start()
    return listener, handler


def uninstall_log_shipping(listener: QueueListener, handler: QueueHandler, logger_name: str = "pizza") -> None:
    """Detach handler from logger_name, drain the queue and close the Loki session."""
    logging.getLogger(logger_name).removeHandler(handler)
    listener.stop()
    for target in listener.handlers:
        target.close()
