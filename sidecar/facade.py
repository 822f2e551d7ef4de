"""
F3 Sidecar: Query Facade

Read-only accessors over a running engine. The facade keeps only a
reference to the engine; it takes no locks and never touches the
supervisor, so a query cannot wait on a retry backoff.

Error handling is split in two:
  - primary reads (certificates, power tables) propagate engine errors
    unchanged
  - get_manifest() carries one best-effort enrichment: when the
    manifest has no InitialPowerTable, it is filled from the base of
    certificate 0's chain. If certificate 0 cannot be fetched the
    manifest is returned as it came.
"""

from __future__ import annotations

import logging
from typing import Callable

from sidecar.engine import EngineHandle
from sidecar.types import (
    FinalityCertificate,
    InstanceProgress,
    Manifest,
    PowerEntries,
    is_cid_defined,
)

logger = logging.getLogger("f3.sidecar.facade")


def backfill_initial_power_table(
    manifest: Manifest,
    fetch_genesis_cert: Callable[[], FinalityCertificate],
) -> Manifest:
    """
    Fill an undefined InitialPowerTable from the genesis certificate.

    Pure apart from the fetch: returns a new Manifest when it fills the
    field, the input manifest otherwise. The fetch is skipped when the
    field is already defined. Fetch errors are swallowed.
    """
    if is_cid_defined(manifest.initial_power_table):
        return manifest
    try:
        cert0 = fetch_genesis_cert()
    except Exception as e:
        logger.debug("Initial power table backfill skipped: %s", e)
        return manifest

    base = cert0.base() if cert0 is not None else None
    if base is None or not is_cid_defined(base.power_table):
        return manifest
    return manifest.with_initial_power_table(base.power_table)


class QueryFacade:
    """Host-facing reads of engine state."""

    def __init__(self, engine: EngineHandle):
        self._engine = engine

    def get_certificate(self, instance: int) -> FinalityCertificate:
        return self._engine.get_cert(instance)

    def get_latest_certificate(self) -> FinalityCertificate:
        return self._engine.get_latest_cert()

    def get_power_table(self, tipset_key: bytes) -> PowerEntries:
        return self._engine.get_power_table(tipset_key)

    def get_power_table_by_instance(self, instance: int) -> PowerEntries:
        return self._engine.get_power_table_by_instance(instance)

    def is_running(self) -> bool:
        return bool(self._engine.is_running())

    def get_progress(self) -> InstanceProgress:
        return self._engine.progress()

    def get_manifest(self) -> Manifest:
        return backfill_initial_power_table(
            self._engine.manifest(),
            lambda: self._engine.get_cert(0),
        )
