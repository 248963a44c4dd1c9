"""Test helper functions."""

import json
from io import BytesIO
from typing import Any, Optional

from src.services.auth import ROLE_ADMIN, ROLE_USER, issue_token


class MockSocket:
    """Socket stand-in: serves one raw request and captures the response bytes."""

    def __init__(self, request: bytes):
        self._request = request
        self.sent = bytearray()

    def makefile(self, *args, **kwargs):
        return BytesIO(self._request)

    def sendall(self, data):
        self.sent.extend(data)

    def close(self):
        pass


def build_request(method: str, path: str, body: Any = None, headers: Optional[dict[str, str]] = None) -> bytes:
    payload = b""
    if body is not None:
        payload = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    lines = [f"{method} {path} HTTP/1.1", "Host: localhost"]
    for key, value in (headers or {}).items():
        lines.append(f"{key}: {value}")
    if payload:
        lines.append("Content-Type: application/json")
        lines.append(f"Content-Length: {len(payload)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8") + payload


def call_handler(
    handler_cls,
    method: str,
    path: str,
    body: Any = None,
    headers: Optional[dict[str, str]] = None,
) -> tuple[int, dict[str, str], Any]:
    """Run a serverless handler against one request; returns (status, headers, json)."""
    sock = MockSocket(build_request(method, path, body, headers))
    handler_cls(sock, ("127.0.0.1", 8000), None)

    head, _, raw_body = bytes(sock.sent).partition(b"\r\n\r\n")
    status_line, *header_lines = head.decode("utf-8").split("\r\n")
    status = int(status_line.split()[1])
    response_headers = {}
    for line in header_lines:
        key, _, value = line.partition(": ")
        response_headers[key] = value
    data = json.loads(raw_body.decode("utf-8")) if raw_body else None
    return status, response_headers, data


def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token('admin:admin', ROLE_ADMIN)}"}


def wallet_headers(address: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(address, ROLE_USER, wallet_address=address)}"}
