"""
F3 Sidecar: JSON-RPC Query Handler

Maps the host-facing JSON-RPC methods onto the query facade:

  Filecoin.F3GetCertificate(instance)            → FinalityCertificate
  Filecoin.F3GetLatestCertificate()              → FinalityCertificate
  Filecoin.F3GetF3PowerTable(tipset_key_b64)     → PowerEntries
  Filecoin.F3GetF3PowerTableByInstance(instance) → PowerEntries
  Filecoin.F3IsRunning()                         → bool
  Filecoin.F3GetProgress()                       → InstanceProgress
  Filecoin.F3GetManifest()                       → Manifest

Engine errors become error objects with code 1 and the engine's message.
Framework-free so it can be exercised without an HTTP stack.
"""

from __future__ import annotations

import binascii
import logging
from typing import Any, Callable

from api.models import (
    ENGINE_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    RpcRequest,
    RpcResponse,
)
from sidecar.facade import QueryFacade
from sidecar.types import decode_bytes, encode_power_entries

logger = logging.getLogger("f3.sidecar.api")

NAMESPACE = "Filecoin"


class InvalidParams(Exception):
    pass


def _instance_param(params: list[Any]) -> int:
    if len(params) != 1:
        raise InvalidParams(f"expected 1 param, got {len(params)}")
    value = params[0]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidParams("instance must be a non-negative integer")
    return value


def _tipset_key_param(params: list[Any]) -> bytes:
    if len(params) != 1:
        raise InvalidParams(f"expected 1 param, got {len(params)}")
    try:
        return decode_bytes(params[0])
    except (binascii.Error, TypeError, ValueError) as e:
        raise InvalidParams(f"tipset key must be base64 bytes: {e}") from None


def _no_params(params: list[Any]) -> None:
    if params:
        raise InvalidParams(f"expected no params, got {len(params)}")


class QueryHandler:
    """Dispatches JSON-RPC requests to a QueryFacade."""

    def __init__(self, facade: QueryFacade):
        self.facade = facade
        self._methods: dict[str, Callable[[list[Any]], Any]] = {
            f"{NAMESPACE}.F3GetCertificate": self._get_certificate,
            f"{NAMESPACE}.F3GetLatestCertificate": self._get_latest_certificate,
            f"{NAMESPACE}.F3GetF3PowerTable": self._get_power_table,
            f"{NAMESPACE}.F3GetF3PowerTableByInstance": self._get_power_table_by_instance,
            f"{NAMESPACE}.F3IsRunning": self._is_running,
            f"{NAMESPACE}.F3GetProgress": self._get_progress,
            f"{NAMESPACE}.F3GetManifest": self._get_manifest,
        }

    @property
    def methods(self) -> list[str]:
        return sorted(self._methods)

    # ── Methods ───────────────────────────────────────────────

    def _get_certificate(self, params: list[Any]) -> Any:
        return self.facade.get_certificate(_instance_param(params)).to_dict()

    def _get_latest_certificate(self, params: list[Any]) -> Any:
        _no_params(params)
        return self.facade.get_latest_certificate().to_dict()

    def _get_power_table(self, params: list[Any]) -> Any:
        return encode_power_entries(self.facade.get_power_table(_tipset_key_param(params)))

    def _get_power_table_by_instance(self, params: list[Any]) -> Any:
        return encode_power_entries(
            self.facade.get_power_table_by_instance(_instance_param(params))
        )

    def _is_running(self, params: list[Any]) -> Any:
        _no_params(params)
        return self.facade.is_running()

    def _get_progress(self, params: list[Any]) -> Any:
        _no_params(params)
        return self.facade.get_progress().to_dict()

    def _get_manifest(self, params: list[Any]) -> Any:
        _no_params(params)
        return self.facade.get_manifest().to_dict()

    # ── Dispatch ──────────────────────────────────────────────

    def handle_one(self, body: Any) -> dict[str, Any] | None:
        """Handle one request object. Returns None for notifications."""
        request = RpcRequest.from_body(body)
        errors = request.validate()
        if errors:
            req_id = None if request.is_notification else request.id
            return RpcResponse.failure(req_id, INVALID_REQUEST, "; ".join(errors)).to_dict()

        response = self._call(request)
        if request.is_notification:
            return None
        return response.to_dict()

    def _call(self, request: RpcRequest) -> RpcResponse:
        req_id = None if request.is_notification else request.id
        fn = self._methods.get(request.method)
        if fn is None:
            return RpcResponse.failure(
                req_id, METHOD_NOT_FOUND, f"method '{request.method}' not found"
            )
        if not isinstance(request.params, list):
            return RpcResponse.failure(
                req_id, INVALID_PARAMS, "params must be an array; named params are not supported"
            )
        try:
            return RpcResponse(id=req_id, result=fn(request.params))
        except InvalidParams as e:
            return RpcResponse.failure(req_id, INVALID_PARAMS, str(e))
        except Exception as e:
            logger.debug("%s failed: %s", request.method, e)
            return RpcResponse.failure(req_id, ENGINE_ERROR, str(e) or type(e).__name__)

    def handle(self, body: Any) -> Any:
        """
        Handle a decoded JSON-RPC body: a single request or a batch.
        Returns the response payload, or None when nothing is owed.
        """
        if isinstance(body, list):
            if not body:
                return RpcResponse.failure(None, INVALID_REQUEST, "empty batch").to_dict()
            responses = [r for r in (self.handle_one(item) for item in body) if r is not None]
            return responses or None
        return self.handle_one(body)

