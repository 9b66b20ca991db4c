# Este archivo implementa el servidor HTTP de prueba que el arnés lanza:
# /health devuelve el estado y /webhook valida la firma HMAC si hay secreto.

"""
Bundled target server.

One server parameterized by port and readiness message. Once bound it prints
the readiness message to stdout, which is what the launcher waits for.
"""
import json
import signal
import sys
import time
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from .exceptions import WebhookSignatureError
from .utils.logging import get_logger
from .utils.webhook import SIGNATURE_HEADER, verify_signature

logger = get_logger(__name__)

DEFAULT_READINESS_MESSAGE = "Server running on port {port}"


class HarnessHTTPServer(HTTPServer):
    """HTTPServer carrying the settings the handler needs."""

    def __init__(
        self,
        address,
        environment: str = "development",
        webhook_secret: Optional[str] = None
    ):
        super().__init__(address, HealthWebhookHandler)
        self.environment = environment
        self.webhook_secret = webhook_secret
        self.started_at = time.monotonic()

    @property
    def port(self) -> int:
        return self.server_address[1]

    def uptime(self) -> float:
        return round(time.monotonic() - self.started_at, 3)


class HealthWebhookHandler(BaseHTTPRequestHandler):
    server: HarnessHTTPServer

    def do_GET(self):
        if self.path.split("?", 1)[0] == "/health":
            self._send_json(200, {
                "status": "OK",
                "message": "Server Started",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": self.server.uptime(),
                "environment": self.server.environment,
            })
        else:
            self._send_json(404, {"error": "Not found"})

    def do_POST(self):
        if self.path.split("?", 1)[0] != "/webhook":
            self._send_json(404, {"error": "Not found"})
            return

        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = -1
        if length < 0:
            # Body cannot be framed, so the connection cannot be reused
            self.close_connection = True
            self._send_json(400, {"error": "Invalid Content-Length"})
            return
        body = self.rfile.read(length) if length else b""

        signature = self.headers.get(SIGNATURE_HEADER)
        if self.server.webhook_secret and signature:
            try:
                verify_signature(self.server.webhook_secret, body, signature)
            except WebhookSignatureError:
                logger.warning("webhook_signature_rejected", client=self.address_string())
                self._send_json(401, {"error": "Invalid signature"})
                return

        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            self._send_json(400, {"error": "Invalid JSON"})
            return

        logger.info("webhook_received", payload=payload)
        self._send_json(200, {"received": True})

    def do_OPTIONS(self):
        self.send_response(204)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type, " + SIGNATURE_HEADER)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_json(self, status: int, data: dict) -> None:
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.info("http_request", client=self.address_string(), request=format % args)


def create_server(
    host: str = "127.0.0.1",
    port: int = 4000,
    environment: str = "development",
    webhook_secret: Optional[str] = None
) -> HarnessHTTPServer:
    """Bind the server without serving yet (port 0 picks a free port)."""
    return HarnessHTTPServer(
        (host, port),
        environment=environment,
        webhook_secret=webhook_secret
    )


def _exit_on_sigterm(signum, frame):
    raise SystemExit(0)


def serve(
    host: str = "127.0.0.1",
    port: int = 4000,
    readiness_message: str = DEFAULT_READINESS_MESSAGE,
    environment: str = "development",
    webhook_secret: Optional[str] = None
) -> None:
    """Bind, announce readiness on stdout and serve until SIGTERM/SIGINT."""
    server = create_server(host, port, environment=environment, webhook_secret=webhook_secret)
    signal.signal(signal.SIGTERM, _exit_on_sigterm)

    print(readiness_message.format(port=server.port, host=host), flush=True)
    logger.info("webapp_listening", host=host, port=server.port, environment=environment)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("webapp_shutdown", reason="keyboard_interrupt")
    finally:
        server.server_close()
        sys.stdout.flush()
