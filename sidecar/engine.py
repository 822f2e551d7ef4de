"""
F3 Sidecar: Engine Handle

The consensus engine is an external collaborator. The sidecar only
needs the surface below: one blocking `run` entry point and a handful
of thread-safe readers. Whatever implements it (an FFI binding, a
subprocess wrapper, an in-process fake) is built by an engine factory:

    factory(capabilities, params) → EngineHandle

The factory is referenced from config as "package.module:callable" so
the sidecar never imports a concrete engine itself.

Construction order is fixed: capabilities are validated first, the
factory is called second. An incomplete contract never reaches the
engine.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from sidecar.capabilities import HostCapabilities, validate_capabilities
from sidecar.errors import EngineFactoryError
from sidecar.types import FinalityCertificate, InstanceProgress, Manifest, PowerEntries

logger = logging.getLogger("f3.sidecar.engine")


@dataclass(frozen=True)
class RunParams:
    """Arguments of the engine's run entry point."""
    rpc_endpoint: str
    jwt: str = field(default="", repr=False)
    f3_rpc_endpoint: str = "127.0.0.1:23456"
    initial_power_table: str | None = None
    bootstrap_epoch: int = -1
    finality: int = 900
    db: str = ""

    def validate(self) -> list[str]:
        """Return list of validation errors (empty = valid)."""
        errors = []
        if not self.rpc_endpoint or not isinstance(self.rpc_endpoint, str):
            errors.append("rpc_endpoint is required and must be a string")
        if not self.f3_rpc_endpoint:
            errors.append("f3_rpc_endpoint is required")
        if not isinstance(self.bootstrap_epoch, int):
            errors.append("bootstrap_epoch must be an integer")
        if not isinstance(self.finality, int) or self.finality < 0:
            errors.append("finality must be a non-negative integer")
        return errors


class EngineHandle(Protocol):
    """
    Surface of a constructed consensus engine.

    `run` blocks until the engine stops; it returns normally on a clean
    exit and raises on failure. All other methods are safe to call from
    any thread while `run` is in progress.
    """

    def run(self, params: RunParams) -> None: ...

    def get_cert(self, instance: int) -> FinalityCertificate: ...

    def get_latest_cert(self) -> FinalityCertificate: ...

    def get_power_table(self, tipset_key: bytes) -> PowerEntries: ...

    def get_power_table_by_instance(self, instance: int) -> PowerEntries: ...

    def is_running(self) -> bool: ...

    def progress(self) -> InstanceProgress: ...

    def manifest(self) -> Manifest: ...


EngineFactory = Callable[[HostCapabilities, RunParams], EngineHandle]


def load_engine_factory(reference: str) -> EngineFactory:
    """
    Resolve "package.module:callable" to a factory.

    Raises EngineFactoryError when the module or attribute is missing.
    """
    module_name, sep, attr = (reference or "").partition(":")
    if not sep or not module_name or not attr:
        raise EngineFactoryError(
            f"Engine factory must look like 'package.module:callable', got {reference!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise EngineFactoryError(f"Cannot import engine module {module_name!r}: {e}") from e

    target: Any = module
    for part in attr.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise EngineFactoryError(f"{module_name!r} has no attribute {attr!r}")
    if not callable(target):
        raise EngineFactoryError(f"Engine factory {reference!r} is not callable")
    return target


def construct_engine(
    factory: EngineFactory,
    capabilities: HostCapabilities,
    params: RunParams,
) -> EngineHandle:
    """
    Validate the capability contract, then build the engine.

    ContractIncomplete propagates before the factory is touched.
    """
    validate_capabilities(capabilities)
    engine = factory(capabilities, params)
    logger.debug("Engine constructed: %s", type(engine).__name__)
    return engine
