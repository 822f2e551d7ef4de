"""
F3 Sidecar: JSON-RPC Models

Request/response dataclasses for the query server.
No FastAPI dependency. Used by server, handler and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Engine could not satisfy the read (unknown instance, no certificate yet)
ENGINE_ERROR = 1

_NO_ID = object()


@dataclass
class RpcRequest:
    """One JSON-RPC call from the host."""
    method: str
    params: list[Any] | dict[str, Any] = field(default_factory=list)
    id: Any = _NO_ID
    jsonrpc: str = "2.0"

    @property
    def is_notification(self) -> bool:
        return self.id is _NO_ID

    @classmethod
    def from_body(cls, body: Any) -> RpcRequest:
        if not isinstance(body, dict):
            return cls(method="", params=[], id=None, jsonrpc="")
        params = body.get("params")
        if params is None:
            params = []
        return cls(
            method=body.get("method", ""),
            params=params,
            id=body["id"] if "id" in body else _NO_ID,
            jsonrpc=body.get("jsonrpc", ""),
        )

    def validate(self) -> list[str]:
        """Return list of validation errors (empty = valid)."""
        errors = []
        if self.jsonrpc != "2.0":
            errors.append("jsonrpc must be '2.0'")
        if not self.method or not isinstance(self.method, str):
            errors.append("method is required and must be a string")
        if not isinstance(self.params, (list, dict)):
            errors.append("params must be an array or object")
        return errors


@dataclass
class RpcResponse:
    id: Any
    result: Any = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            out["error"] = self.error
        else:
            out["result"] = self.result
        return out

    @classmethod
    def failure(cls, id: Any, code: int, message: str, data: Any = None) -> RpcResponse:
        error: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        return cls(id=id, error=error)
