"""
F3 Sidecar: Error Taxonomy

  ContractIncomplete  : configuration defect, fatal, never retried
  ConfigError         : invalid configuration values, fatal
  EngineFactoryError  : engine factory reference cannot be resolved
  RpcError            : host node answered with a JSON-RPC error object
  RpcTransportError   : host node unreachable or answered garbage

Transient engine failures are whatever `EngineHandle.run` raises; the
supervisor classifies them, they have no class of their own. Query
failures are propagated unchanged from the engine.
"""

from __future__ import annotations


class SidecarError(Exception):
    """Base class for errors raised by the sidecar itself."""


class ContractIncomplete(SidecarError):
    """Raised when one or more host capabilities are not bound."""

    def __init__(self, missing: list[str], detail: str = ""):
        self.missing = list(missing)
        msg = "Capability contract incomplete: missing " + ", ".join(self.missing)
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class ConfigError(SidecarError):
    """Raised when a configuration value is missing or malformed."""


class EngineFactoryError(SidecarError):
    """Raised when the configured engine factory cannot be loaded."""


class RpcError(SidecarError):
    """A JSON-RPC error object returned by the host node."""

    def __init__(self, method: str, code: int, message: str, data=None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{method}: RPC error {code}: {message}")


class RpcTransportError(SidecarError):
    """The host node could not be reached or returned a malformed reply."""

    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"{method}: {reason}")
