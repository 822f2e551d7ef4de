"""
F3 Sidecar: Host Node RPC Client

JSON-RPC 2.0 over HTTP to the host node, authenticated with the node's
bearer token. RemoteCapabilities implements the capability contract on
top of it, one RPC method per capability:

  F3.GetRawNetworkName        F3.GetPowerTable
  F3.GetTipsetByEpoch         F3.ProtectPeer
  F3.GetTipset                F3.GetParticipatingMinerIDs
  F3.GetHead                  F3.SignMessage
  F3.GetParent                F3.Finalize
  Filecoin.Version            Filecoin.NetAddrsListen

Failures surface as RpcError (the node returned a JSON-RPC error object)
or RpcTransportError (connection failure, HTTP error, malformed body).

Usage:
    from sidecar.rpc import JsonRpcClient, RemoteCapabilities

    client = JsonRpcClient("127.0.0.1:2345/rpc/v1", token=jwt)
    caps = RemoteCapabilities(client)
    head = caps.get_head()
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Any, Callable

import httpx

from sidecar.capabilities import HostCapabilities
from sidecar.errors import RpcError, RpcTransportError
from sidecar.types import (
    AddrInfo,
    PowerEntries,
    Signature,
    TipSet,
    VersionInfo,
    decode_power_entries,
    encode_bytes,
)

logger = logging.getLogger("f3.sidecar.rpc")


def normalize_endpoint(endpoint: str) -> str:
    """Host endpoints are passed without a scheme; default to http."""
    if "://" in endpoint:
        return endpoint
    return f"http://{endpoint}"


class JsonRpcClient:
    """Thread-safe JSON-RPC 2.0 client."""

    def __init__(
        self,
        endpoint: str,
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = normalize_endpoint(endpoint)
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(timeout=timeout, headers=headers, transport=transport)
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def call(self, method: str, *params: Any) -> Any:
        """Invoke `method` with positional params and return its result."""
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": list(params),
        }
        t0 = time.time()
        try:
            resp = self._client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise RpcTransportError(method, str(e)) from e

        try:
            body = resp.json()
        except ValueError:
            raise RpcTransportError(
                method, f"HTTP {resp.status_code}: non-JSON response"
            ) from None

        if not isinstance(body, dict):
            raise RpcTransportError(method, "response is not a JSON-RPC object")

        error = body.get("error")
        if error is not None and not isinstance(error, dict):
            raise RpcTransportError(method, f"malformed error object: {error!r}")
        if error:
            raise RpcError(
                method,
                int(error.get("code", 0)),
                error.get("message", ""),
                error.get("data"),
            )
        if resp.status_code >= 400:
            raise RpcTransportError(method, f"HTTP {resp.status_code}")

        logger.debug("%s ok (%.1fms)", method, (time.time() - t0) * 1000)
        return body.get("result")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> JsonRpcClient:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class RemoteCapabilities(HostCapabilities):
    """Capability contract served by the host node over JSON-RPC."""

    def __init__(self, client: JsonRpcClient):
        self.client = client

    def _decode(
        self, decode: Callable[[Any], Any], method: str, *params: Any, nullable: bool = False
    ) -> Any:
        """Call `method` and decode its result; malformed results are transport errors."""
        result = self.client.call(method, *params)
        if result is None and not nullable:
            raise RpcTransportError(method, "empty result")
        try:
            return decode(result)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise RpcTransportError(method, f"malformed result: {e}") from e

    def get_raw_network_name(self) -> str:
        name = self.client.call("F3.GetRawNetworkName")
        if not isinstance(name, str):
            raise RpcTransportError("F3.GetRawNetworkName", f"expected a string, got {name!r}")
        return name

    def get_tipset_by_epoch(self, epoch: int) -> TipSet:
        return self._decode(TipSet.from_dict, "F3.GetTipsetByEpoch", epoch)

    def get_tipset(self, tipset_key: bytes) -> TipSet:
        return self._decode(TipSet.from_dict, "F3.GetTipset", encode_bytes(tipset_key))

    def get_head(self) -> TipSet:
        return self._decode(TipSet.from_dict, "F3.GetHead")

    def get_parent(self, tipset_key: bytes) -> TipSet:
        return self._decode(TipSet.from_dict, "F3.GetParent", encode_bytes(tipset_key))

    def get_power_table(self, tipset_key: bytes) -> PowerEntries:
        # An empty table may arrive as null
        return self._decode(
            decode_power_entries, "F3.GetPowerTable", encode_bytes(tipset_key), nullable=True
        )

    def protect_peer(self, peer_id: str) -> bool:
        return bool(self.client.call("F3.ProtectPeer", peer_id))

    def get_participating_miner_ids(self) -> list[int]:
        return [int(i) for i in self.client.call("F3.GetParticipatingMinerIDs") or []]

    def sign_message(self, signer: bytes, message: bytes) -> Signature:
        return self._decode(
            Signature.from_dict, "F3.SignMessage", encode_bytes(signer), encode_bytes(message)
        )

    def finalize(self, tipset_key: bytes) -> None:
        self.client.call("F3.Finalize", encode_bytes(tipset_key))

    def version(self) -> VersionInfo:
        return self._decode(VersionInfo.from_dict, "Filecoin.Version")

    def net_addrs_listen(self) -> AddrInfo:
        return self._decode(AddrInfo.from_dict, "Filecoin.NetAddrsListen")
