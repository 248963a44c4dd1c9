"""Shared base for the JSON serverless endpoints under api/."""

import asyncio
import json
from datetime import datetime
from enum import Enum
from http.server import BaseHTTPRequestHandler
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from src.utils.config import get_settings
from src.utils.errors import EscrowBackendError, LedgerUnavailable, ValidationError
from src.utils.logging import correlation_context, get_structured_logger
from src.utils.logging_config import LoggingConfig

logger = get_structured_logger(__name__)


def run_async(coro):
    """Run a coroutine on the process event loop (serverless handlers are sync)."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = None
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def to_jsonable(value: Any) -> Any:
    """Convert models and containers to JSON-ready data with camelCase keys."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, dict):
        return {to_camel(str(k)) if "_" in str(k) else k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class JSONHandler(BaseHTTPRequestHandler):
    """Routes GET/POST to ``get``/``post`` coroutines and writes the JSON envelope.

    Subclasses return the response data, or ``(data, status)``. Errors from the
    taxonomy in src.utils.errors map to their status codes; anything else is
    logged and returned as a generic internal error.
    """

    def do_GET(self):
        self._dispatch("get")

    def do_POST(self):
        self._dispatch("post")

    def do_OPTIONS(self):
        self.send_response(204)
        self._send_cors_headers()
        self.end_headers()

    # Request helpers

    @property
    def query(self) -> dict[str, str]:
        parsed = parse_qs(urlparse(self.path).query)
        return {key: values[-1] for key, values in parsed.items()}

    def path_param(self, name: str) -> str:
        """Path parameter from a rewritten query string, else the last path segment."""
        value = self.query.get(name)
        if value:
            return value
        segments = [s for s in urlparse(self.path).path.split("/") if s]
        if not segments:
            raise ValidationError(errors=[f"{name}: Missing path parameter"])
        return segments[-1]

    def int_param(self, name: str, value: Optional[str] = None) -> int:
        raw = value if value is not None else self.path_param(name)
        if not (raw.isascii() and raw.isdigit()):
            raise ValidationError(errors=[f"{name}: must be a non-negative integer"])
        return int(raw)

    def read_json(self) -> Any:
        content_length = int(self.headers.get("Content-Length", 0) or 0)
        raw_body = self.rfile.read(content_length).decode("utf-8") if content_length > 0 else ""
        if not raw_body:
            return {}
        try:
            return json.loads(raw_body)
        except json.JSONDecodeError:
            raise ValidationError("Request body must be valid JSON")

    # Response helpers

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Headers", "Authorization, Content-Type, X-Correlation-ID")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")

    def send_json(self, status: int, payload: dict, headers: Optional[dict[str, str]] = None) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self._send_cors_headers()
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, error: EscrowBackendError) -> None:
        payload = to_jsonable(error.to_dict())
        headers = {}
        if isinstance(error, LedgerUnavailable):
            headers["Retry-After"] = str(error.retry_after)
        elif error.status_code >= 500 and not get_settings().is_development:
            payload = {"success": False, "message": "internal server error"}
        self.send_json(error.status_code, payload, headers)

    def _dispatch(self, method: str) -> None:
        LoggingConfig.setup_logging()
        route = getattr(self, method, None)
        if route is None:
            self.send_json(405, {"success": False, "message": "Method not allowed"})
            return

        correlation_id = self.headers.get(LoggingConfig.LOG_CORRELATION_ID_HEADER) or None
        with correlation_context(correlation_id) as cid:
            try:
                result = run_async(route())
                status = 200
                if isinstance(result, tuple):
                    result, status = result
                self.send_json(status, {"success": True, "data": to_jsonable(result)}, {"X-Correlation-ID": cid})
            except EscrowBackendError as e:
                log = logger.error if e.status_code >= 500 else logger.warning
                log(
                    "Request failed",
                    path=self.path,
                    http_method=method.upper(),
                    status_code=e.status_code,
                    error_type=type(e).__name__,
                    error=e.message,
                )
                self._send_error(e)
            except Exception as e:
                logger.exception("Unhandled error", path=self.path, http_method=method.upper(), error=str(e))
                payload = {"success": False, "message": "internal server error"}
                if get_settings().is_development:
                    payload["error"] = str(e)
                self.send_json(500, payload)

    def log_message(self, format, *args):
        logger.debug("HTTP request", detail=format % args)
