from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from typing import Any


def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    api_key: str | None,
    timeout_seconds: float,
    error_cls: type[Exception] = RuntimeError,
) -> dict[str, Any]:
    """POST a JSON body and decode a JSON object reply.

    Transport and HTTP failures are raised as ``error_cls`` with the status or
    reason in the message.
    """
    data = json.dumps(payload).encode("utf-8")
    request = urllib.request.Request(url, data=data, method="POST")
    request.add_header("Content-Type", "application/json")
    if api_key:
        request.add_header("Authorization", f"Bearer {api_key}")
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        raise error_cls(f"HTTP {exc.code}: {body[:500]}") from exc
    except urllib.error.URLError as exc:
        raise error_cls(f"connection error: {exc.reason}") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise error_cls(f"timeout after {timeout_seconds}s") from exc
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise error_cls(f"parse error: invalid JSON response ({raw[:200]})") from exc
    if not isinstance(decoded, dict):
        raise error_cls("parse error: response is not a JSON object")
    return decoded
