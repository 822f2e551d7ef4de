"""
F3 Sidecar

Boundary adapter between a host node and an external F3 fast-finality
engine: the host supplies a capability contract, the sidecar supervises
the engine's blocking run loop and serves read-only finality queries.

Usage:
    from sidecar import CallableCapabilities, Supervisor, QueryFacade
    from sidecar.engine import construct_engine, RunParams

    caps = CallableCapabilities(**bindings)
    engine = construct_engine(factory, caps, params)
    facade = QueryFacade(engine)
    ok = bool(Supervisor(engine, params).run())
"""

from sidecar.capabilities import (
    CAPABILITY_NAMES,
    CallableCapabilities,
    HostCapabilities,
    validate_capabilities,
)
from sidecar.engine import EngineHandle, RunParams, construct_engine
from sidecar.errors import ContractIncomplete, SidecarError
from sidecar.facade import QueryFacade, backfill_initial_power_table
from sidecar.supervisor import RetryPolicy, Supervisor, SupervisorResult, SupervisorState

__all__ = [
    "CAPABILITY_NAMES",
    "CallableCapabilities",
    "HostCapabilities",
    "validate_capabilities",
    "EngineHandle",
    "RunParams",
    "construct_engine",
    "ContractIncomplete",
    "SidecarError",
    "QueryFacade",
    "backfill_initial_power_table",
    "RetryPolicy",
    "Supervisor",
    "SupervisorResult",
    "SupervisorState",
]
