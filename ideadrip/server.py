"""
Minimal HTTP front for the dispatch trigger.

    POST /api/cron/send-emails   (Authorization: Bearer <CRON_SECRET>)
    GET  /healthz

No request body is required. Runs are serialized: a second trigger that
arrives while one is still running waits for it.
"""

from __future__ import annotations

import json
import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Type
from urllib.parse import urlparse

from .config import DispatchSettings
from .trigger import Runner, handle_trigger

logger = logging.getLogger(__name__)

TRIGGER_PATH = "/api/cron/send-emails"


def make_handler(settings: DispatchSettings, runner: Runner, *, notify: bool = True) -> Type[BaseHTTPRequestHandler]:
    run_lock = threading.Lock()

    class DispatchHandler(BaseHTTPRequestHandler):
        server_version = "IdeaDripDispatch/1.0"

        def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def do_GET(self):
            path = urlparse(self.path).path.rstrip("/")
            if path == "/healthz":
                self._send_json(HTTPStatus.OK, {"ok": True})
                return
            self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not found"})

        def do_POST(self):
            path = urlparse(self.path).path.rstrip("/")
            if path != TRIGGER_PATH:
                self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not found"})
                return

            # Drain any body the caller sent; we don't use it.
            try:
                length = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                length = 0
            if 0 < length <= 64_000:
                self.rfile.read(length)

            with run_lock:
                status, payload = handle_trigger(
                    self.headers.get("Authorization"),
                    secret=settings.cron_secret,
                    runner=runner,
                    notify=notify,
                )
            self._send_json(status, payload)

        def log_message(self, format, *args):
            logger.debug("%s - %s", self.address_string(), format % args)

    return DispatchHandler


def build_server(
    settings: DispatchSettings,
    runner: Runner,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    notify: bool = True,
) -> ThreadingHTTPServer:
    handler = make_handler(settings, runner, notify=notify)
    return ThreadingHTTPServer((host or settings.http_host, settings.http_port if port is None else port), handler)


def serve(settings: DispatchSettings, runner: Runner, *, host: Optional[str] = None, port: Optional[int] = None) -> None:
    httpd = build_server(settings, runner, host=host, port=port)
    bound_host, bound_port = httpd.server_address[:2]
    logger.info("Dispatch trigger listening on http://%s:%s%s", bound_host, bound_port, TRIGGER_PATH)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down dispatch trigger")
    finally:
        httpd.server_close()
