"""
F3 Sidecar: Runtime Wiring

Assembles one sidecar process, in order:

  1. capabilities: given by the caller, or RemoteCapabilities over the
     host node's JSON-RPC endpoint
  2. validate capabilities, then construct the engine through its factory
  3. QueryFacade over the engine, served on the F3 RPC endpoint
  4. Supervisor drives engine.run with bounded retry

Logging is not touched here; the entry point calls
sidecar.logging.initialize() once before building a Sidecar.

Usage:
    from sidecar.runtime import Sidecar

    sidecar = Sidecar(cfg, engine_factory=my_factory)
    ok = bool(sidecar.run())
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from sidecar.capabilities import HostCapabilities, validate_capabilities
from sidecar.config import SidecarConfig
from sidecar.engine import (
    EngineFactory,
    EngineHandle,
    RunParams,
    construct_engine,
    load_engine_factory,
)
from sidecar.errors import EngineFactoryError
from sidecar.facade import QueryFacade
from sidecar.logging import LoggingConfig, initialize
from sidecar.rpc import JsonRpcClient, RemoteCapabilities
from sidecar.supervisor import RetryPolicy, Supervisor, SupervisorResult

logger = logging.getLogger("f3.sidecar.runtime")


class Sidecar:
    """One engine, its supervisor, its facade and its query server."""

    def __init__(
        self,
        config: SidecarConfig,
        capabilities: HostCapabilities | None = None,
        engine_factory: EngineFactory | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ):
        self.config = config
        self._capabilities = capabilities
        self._engine_factory = engine_factory
        self._sleep_fn = sleep_fn
        self._client: JsonRpcClient | None = None
        self._server: Any = None
        self.engine: EngineHandle | None = None
        self.facade: QueryFacade | None = None
        self.supervisor: Supervisor | None = None

    def _resolve_factory(self) -> EngineFactory:
        if self._engine_factory is not None:
            return self._engine_factory
        if not self.config.engine_factory:
            raise EngineFactoryError(
                "No engine factory configured (engine.factory / SIDECAR_ENGINE_FACTORY)"
            )
        return load_engine_factory(self.config.engine_factory)

    def _resolve_capabilities(self) -> HostCapabilities:
        if self._capabilities is not None:
            return self._capabilities
        params = self.config.params
        self._client = JsonRpcClient(
            params.rpc_endpoint, token=params.jwt, timeout=self.config.rpc_timeout,
        )
        return RemoteCapabilities(self._client)

    def build(self) -> Sidecar:
        """
        Validate the contract and construct engine, facade and supervisor.

        Raises ContractIncomplete or EngineFactoryError before any
        engine activity.
        """
        if self.supervisor is not None:
            return self
        factory = self._resolve_factory()
        capabilities = validate_capabilities(self._resolve_capabilities())
        self.engine = construct_engine(factory, capabilities, self.config.params)
        self.facade = QueryFacade(self.engine)
        self.supervisor = Supervisor(
            self.engine, self.config.params, self.config.retry, sleep_fn=self._sleep_fn,
        )
        return self

    def _start_server(self) -> None:
        from api.server import create_app, serve_in_thread

        host, port = self.config.server_address
        app = create_app(self.facade, self.supervisor)
        self._server, _ = serve_in_thread(app, host, port)

    def run(self) -> SupervisorResult:
        """Build if needed, serve queries, and block in the supervisor loop."""
        try:
            self.build()
            if self.config.server_enabled:
                self._start_server()
            result = self.supervisor.run()
        finally:
            self.close()
        if result:
            logger.info("F3 sidecar finished cleanly")
        else:
            logger.error(
                "F3 sidecar gave up after %d attempt(s): %s",
                result.attempts, result.last_error,
            )
        return result

    def stop(self) -> None:
        if self.supervisor is not None:
            self.supervisor.stop()

    def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
            self._server = None
        if self._client is not None:
            self._client.close()
            self._client = None


def run_sidecar(
    rpc_endpoint: str,
    jwt: str,
    f3_rpc_endpoint: str,
    initial_power_table: str | None,
    bootstrap_epoch: int,
    finality: int,
    db: str,
    engine_factory: EngineFactory | str,
    capabilities: HostCapabilities | None = None,
    retry: RetryPolicy | None = None,
    logging_config: LoggingConfig | None = None,
    serve: bool = True,
) -> bool:
    """
    Run entry point for an embedding host. Returns True when the engine
    exited cleanly, False when the retry budget ran out.

    Configuration defects (ContractIncomplete, EngineFactoryError) raise.
    """
    initialize(logging_config)
    params = RunParams(
        rpc_endpoint=rpc_endpoint,
        jwt=jwt,
        f3_rpc_endpoint=f3_rpc_endpoint,
        initial_power_table=initial_power_table or None,
        bootstrap_epoch=bootstrap_epoch,
        finality=finality,
        db=db,
    )
    config = SidecarConfig(
        params=params,
        retry=retry or RetryPolicy(),
        logging=logging_config or LoggingConfig(),
        engine_factory=engine_factory if isinstance(engine_factory, str) else "",
        server_enabled=serve,
    )
    factory = None if isinstance(engine_factory, str) else engine_factory
    sidecar = Sidecar(config, capabilities=capabilities, engine_factory=factory)
    return bool(sidecar.run())
