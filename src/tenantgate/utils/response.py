from __future__ import annotations

from typing import Any

from tenantgate.utils.time_utils import now_ms


def success(data: Any, message: str = "request processed successfully") -> dict[str, Any]:
    return {"status": "success", "message": message, "data": data, "timestamp": now_ms()}


def failure(message: str, *, code: int | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"status": "failure", "message": message, "timestamp": now_ms()}
    if code is not None:
        body["code"] = code
    return body
