"""
F3 Sidecar: Fixture Engine and Host

In-memory stand-ins for the two external collaborators:

    FixtureChain        : a tiny host chain (tipsets + power table)
    fixture_capabilities(chain) → CallableCapabilities bound to it
    FakeEngine          : EngineHandle with scripted run outcomes
    create_engine       : engine factory usable as
                          "fixtures.engine:create_engine"

FakeEngine.run consumes one scripted outcome per call: an exception
instance is raised, None returns cleanly. With `hold` set, run blocks
until release() so tests can query while the engine is "running".

Usage:
    from fixtures.engine import FakeEngine, fixture_capabilities

    engine = FakeEngine(outcomes=[RuntimeError("boom"), None])
"""

from __future__ import annotations

import threading
from typing import Any

from sidecar.capabilities import CallableCapabilities
from sidecar.engine import RunParams
from sidecar.types import (
    AddrInfo,
    ECTipSet,
    FinalityCertificate,
    InstanceProgress,
    Manifest,
    Phase,
    PowerEntry,
    Signature,
    TipSet,
    VersionInfo,
)

GENESIS_POWER_TABLE = "bafy2bzacecnamqgqmifpluoeldx7zzglxcljo6oja4vrmtj7432rphldpdmm2"


class NotFound(LookupError):
    pass


# ═══════════════════════════════════════════════════════════════════
# Host side
# ═══════════════════════════════════════════════════════════════════

class FixtureChain:
    """Linear chain of tipsets, one per epoch, keyed b"ts-<epoch>"."""

    def __init__(self, height: int = 10, network: str = "calibrationnet"):
        self.network = network
        self.tipsets = [
            TipSet(key=f"ts-{e}".encode(), epoch=e, timestamp=1_700_000_000 + 30 * e)
            for e in range(height + 1)
        ]
        self.power = (
            PowerEntry(id=1000, power=4 << 40, pub_key=b"\x01" * 48),
            PowerEntry(id=1001, power=2 << 40, pub_key=b"\x02" * 48),
        )
        self.finalized: list[bytes] = []
        self.protected: list[str] = []

    def by_key(self, key: bytes) -> TipSet:
        for ts in self.tipsets:
            if ts.key == key:
                return ts
        raise NotFound(f"tipset {key!r} not found")

    def by_epoch(self, epoch: int) -> TipSet:
        if 0 <= epoch < len(self.tipsets):
            return self.tipsets[epoch]
        raise NotFound(f"no tipset at epoch {epoch}")

    def parent(self, key: bytes) -> TipSet:
        ts = self.by_key(key)
        if ts.epoch == 0:
            raise NotFound("genesis has no parent")
        return self.tipsets[ts.epoch - 1]


def fixture_capabilities(chain: FixtureChain | None = None, **overrides: Any) -> CallableCapabilities:
    """All twelve capabilities bound to `chain`. Keyword overrides replace bindings."""
    chain = chain or FixtureChain()
    bindings: dict[str, Any] = {
        "get_raw_network_name": lambda: chain.network,
        "get_tipset_by_epoch": chain.by_epoch,
        "get_tipset": chain.by_key,
        "get_head": lambda: chain.tipsets[-1],
        "get_parent": chain.parent,
        "get_power_table": lambda key: (chain.by_key(key), chain.power)[1],
        "protect_peer": lambda peer: chain.protected.append(peer) is None,
        "get_participating_miner_ids": lambda: [e.id for e in chain.power],
        "sign_message": lambda signer, msg: Signature(type=2, data=b"sig:" + msg[:16]),
        "finalize": chain.finalized.append,
        "version": lambda: VersionInfo(api_version=0x20100, block_delay=30, version="fixture/1.0"),
        "net_addrs_listen": lambda: AddrInfo(
            id="12D3KooWFixture", addrs=("/ip4/127.0.0.1/tcp/1347",)
        ),
    }
    bindings.update(overrides)
    return CallableCapabilities(**bindings)


# ═══════════════════════════════════════════════════════════════════
# Engine side
# ═══════════════════════════════════════════════════════════════════

def make_certificate(instance: int, power_table: str | None = GENESIS_POWER_TABLE) -> FinalityCertificate:
    base = ECTipSet(epoch=instance * 10, key=f"ts-{instance * 10}".encode(), power_table=power_table)
    head = ECTipSet(epoch=instance * 10 + 5, key=f"ts-{instance * 10 + 5}".encode(), power_table=power_table)
    return FinalityCertificate(instance=instance, ec_chain=(base, head), signature=b"\xaa" * 96)


class FakeEngine:
    """Scripted EngineHandle. Thread-safe."""

    def __init__(
        self,
        capabilities: Any = None,
        params: RunParams | None = None,
        outcomes: list[BaseException | None] | None = None,
        certificates: list[FinalityCertificate] | None = None,
        manifest: Manifest | None = None,
        hold: bool = False,
    ):
        self.capabilities = capabilities
        self.params = params
        self._outcomes = list(outcomes or [])
        self._certs = {c.instance: c for c in (certificates or [])}
        self._manifest = manifest or Manifest(network_name="calibrationnet", bootstrap_epoch=1000)
        self._lock = threading.Lock()
        self._running = False
        self._progress = InstanceProgress()
        self._hold = threading.Event()
        if not hold:
            self._hold.set()
        self.entered = threading.Event()
        self.run_calls = 0
        self.cert_calls: list[int] = []
        self.run_params: list[RunParams] = []

    # ── Scripting ─────────────────────────────────────────────

    def release(self) -> None:
        self._hold.set()

    def add_certificate(self, cert: FinalityCertificate) -> None:
        with self._lock:
            self._certs[cert.instance] = cert
            self._progress = InstanceProgress(instance=cert.instance + 1, phase=Phase.QUALITY)

    # ── EngineHandle ──────────────────────────────────────────

    def run(self, params: RunParams) -> None:
        with self._lock:
            self.run_calls += 1
            self.run_params.append(params)
            outcome = self._outcomes.pop(0) if self._outcomes else None
            self._running = True
        self.entered.set()
        try:
            self._hold.wait()
            if self.capabilities is not None:
                self.capabilities.get_raw_network_name()
            if outcome is not None:
                raise outcome
        finally:
            with self._lock:
                self._running = False

    def get_cert(self, instance: int) -> FinalityCertificate:
        with self._lock:
            self.cert_calls.append(instance)
            cert = self._certs.get(instance)
        if cert is None:
            raise NotFound(f"certificate {instance} not found")
        return cert

    def get_latest_cert(self) -> FinalityCertificate:
        with self._lock:
            if not self._certs:
                raise NotFound("no certificates yet")
            return self._certs[max(self._certs)]

    def get_power_table(self, tipset_key: bytes) -> tuple[PowerEntry, ...]:
        if self.capabilities is None:
            raise NotFound("no host attached")
        return self.capabilities.get_power_table(tipset_key)

    def get_power_table_by_instance(self, instance: int) -> tuple[PowerEntry, ...]:
        cert = self.get_cert(instance)
        return self.get_power_table(cert.base().key)

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def progress(self) -> InstanceProgress:
        with self._lock:
            return self._progress

    def manifest(self) -> Manifest:
        with self._lock:
            return self._manifest


def create_engine(capabilities: Any, params: RunParams) -> FakeEngine:
    """Engine factory for local runs: one clean run with a genesis certificate."""
    return FakeEngine(capabilities, params, certificates=[make_certificate(0)])
