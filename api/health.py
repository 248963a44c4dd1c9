"""Liveness endpoint."""

from http.server import BaseHTTPRequestHandler
import json

from src.utils.config import get_settings
from src.utils.logging_config import SERVICE_NAME


class handler(BaseHTTPRequestHandler):
    """Reports the service and which ledger backend this deployment talks to.

    Reads settings only; never calls the ledger or Supabase.
    """

    def do_GET(self):
        settings = get_settings()
        body = json.dumps({
            "status": "ok",
            "service": SERVICE_NAME,
            "environment": settings.environment,
            "ledgerBackend": settings.ledger_backend,
        }).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_POST(self):
        self.do_GET()
