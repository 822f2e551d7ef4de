"""
F3 Sidecar: Wire Types

Data model shared by the capability contract, the engine protocol, the
query facade and the JSON-RPC surfaces. Every type round-trips through
the JSON shapes the host node and the engine exchange:

  - byte slices are base64 strings, fixed-size byte arrays are lists
    of ints (Go encoding/json conventions)
  - CIDs are links: {"/": "bafy..."}; null or "" is the undefined CID
  - arbitrary-precision integers (power) are decimal strings

All artifacts are frozen: the facade hands out snapshots and never
mutates them. Manifest enrichment goes through dataclasses.replace().
"""

from __future__ import annotations

import base64
import copy
import enum
from dataclasses import dataclass, field, replace
from typing import Any


# ═══════════════════════════════════════════════════════════════════
# Encoding helpers
# ═══════════════════════════════════════════════════════════════════

def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(value: Any) -> bytes:
    """Decode a base64 string or a list of ints. None decodes to b""."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list):
        return bytes(value)
    return base64.b64decode(value)


def is_cid_defined(cid: str | None) -> bool:
    return bool(cid)


def decode_cid(value: Any) -> str | None:
    """Accept {"/": "..."} links or bare strings; undefined becomes None."""
    if isinstance(value, dict):
        value = value.get("/")
    if not value:
        return None
    return str(value)


def encode_cid(cid: str | None) -> dict[str, str] | None:
    if not is_cid_defined(cid):
        return None
    return {"/": cid}


# ═══════════════════════════════════════════════════════════════════
# Consensus progress
# ═══════════════════════════════════════════════════════════════════

class Phase(enum.IntEnum):
    """GPBFT phases, wire values 0..6."""
    INITIAL = 0
    QUALITY = 1
    CONVERGE = 2
    PREPARE = 3
    COMMIT = 4
    DECIDE = 5
    TERMINATED = 6


# ═══════════════════════════════════════════════════════════════════
# Finality artifacts
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ECTipSet:
    """One entry of an EC chain as finalized by the engine."""
    epoch: int
    key: bytes
    power_table: str | None = None
    commitments: bytes = bytes(32)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ECTipSet:
        return cls(
            epoch=int(data.get("Epoch", 0)),
            key=decode_bytes(data.get("Key")),
            power_table=decode_cid(data.get("PowerTable")),
            commitments=decode_bytes(data.get("Commitments")) or bytes(32),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Epoch": self.epoch,
            "Key": encode_bytes(self.key),
            "PowerTable": encode_cid(self.power_table),
            "Commitments": list(self.commitments),
        }


def decode_chain(value: Any) -> tuple[ECTipSet, ...]:
    """EC chains arrive either as a bare list or as {"TipSets": [...]}."""
    if isinstance(value, dict):
        value = value.get("TipSets")
    return tuple(ECTipSet.from_dict(ts) for ts in (value or []))


@dataclass(frozen=True)
class SupplementalData:
    commitments: bytes = bytes(32)
    power_table: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SupplementalData:
        data = data or {}
        return cls(
            commitments=decode_bytes(data.get("Commitments")) or bytes(32),
            power_table=decode_cid(data.get("PowerTable")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Commitments": list(self.commitments),
            "PowerTable": encode_cid(self.power_table),
        }


@dataclass(frozen=True)
class PowerTableDelta:
    participant_id: int
    power_delta: int
    signing_key: bytes = b""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PowerTableDelta:
        return cls(
            participant_id=int(data["ParticipantID"]),
            power_delta=int(data.get("PowerDelta") or 0),
            signing_key=decode_bytes(data.get("SigningKey")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ParticipantID": self.participant_id,
            "PowerDelta": str(self.power_delta),
            "SigningKey": encode_bytes(self.signing_key),
        }


@dataclass(frozen=True)
class FinalityCertificate:
    """
    Proof that the EC chain decided in `instance` is final.

    Certificate 0 is the genesis certificate: the base of its chain
    carries the CID of the initial power table.
    """
    instance: int
    ec_chain: tuple[ECTipSet, ...] = ()
    supplemental_data: SupplementalData = field(default_factory=SupplementalData)
    signers: tuple[int, ...] = ()
    signature: bytes = b""
    power_table_delta: tuple[PowerTableDelta, ...] = ()

    def base(self) -> ECTipSet | None:
        """First tipset of the finalized chain, None for an empty chain."""
        return self.ec_chain[0] if self.ec_chain else None

    def head(self) -> ECTipSet | None:
        return self.ec_chain[-1] if self.ec_chain else None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FinalityCertificate:
        return cls(
            instance=int(data["GPBFTInstance"]),
            ec_chain=decode_chain(data.get("ECChain")),
            supplemental_data=SupplementalData.from_dict(data.get("SupplementalData")),
            signers=tuple(data.get("Signers") or ()),
            signature=decode_bytes(data.get("Signature")),
            power_table_delta=tuple(
                PowerTableDelta.from_dict(d) for d in data.get("PowerTableDelta") or []
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "GPBFTInstance": self.instance,
            "ECChain": [ts.to_dict() for ts in self.ec_chain],
            "SupplementalData": self.supplemental_data.to_dict(),
            "Signers": list(self.signers),
            "Signature": encode_bytes(self.signature),
            "PowerTableDelta": [d.to_dict() for d in self.power_table_delta],
        }


@dataclass(frozen=True)
class PowerEntry:
    """A participant and its weight. Power is an arbitrary-precision int."""
    id: int
    power: int
    pub_key: bytes = b""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PowerEntry:
        return cls(
            id=int(data["ID"]),
            power=int(data.get("Power") or 0),
            pub_key=decode_bytes(data.get("PubKey")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ID": self.id,
            "Power": str(self.power),
            "PubKey": encode_bytes(self.pub_key),
        }


PowerEntries = tuple[PowerEntry, ...]


def decode_power_entries(value: Any) -> PowerEntries:
    return tuple(PowerEntry.from_dict(e) for e in (value or []))


def encode_power_entries(entries: PowerEntries) -> list[dict[str, Any]]:
    return [e.to_dict() for e in entries]


@dataclass(frozen=True)
class InstanceProgress:
    """Current instance, round and phase of the running engine."""
    instance: int = 0
    round: int = 0
    phase: Phase = Phase.INITIAL
    input: tuple[ECTipSet, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstanceProgress:
        return cls(
            instance=int(data.get("ID", 0)),
            round=int(data.get("Round", 0)),
            phase=Phase(int(data.get("Phase", 0))),
            input=decode_chain(data.get("Input")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ID": self.instance,
            "Round": self.round,
            "Phase": int(self.phase),
            "Input": [ts.to_dict() for ts in self.input],
        }


# ═══════════════════════════════════════════════════════════════════
# Manifest
# ═══════════════════════════════════════════════════════════════════

# Typed manifest fields: wire name → attribute name
_MANIFEST_FIELDS = {
    "Pause": "pause",
    "ProtocolVersion": "protocol_version",
    "InitialInstance": "initial_instance",
    "BootstrapEpoch": "bootstrap_epoch",
    "NetworkName": "network_name",
    "ExplicitPower": "explicit_power",
    "IgnoreECPower": "ignore_ec_power",
    "InitialPowerTable": "initial_power_table",
    "CommitteeLookback": "committee_lookback",
    "CatchUpAlignment": "catch_up_alignment",
}


@dataclass(frozen=True)
class Manifest:
    """
    Snapshot of the active consensus parameters.

    Only the fields the sidecar reasons about are typed. The remaining
    sections (Gpbft, EC, CertificateExchange, PubSub, ...) are kept in
    `extra` and written back untouched.
    """
    network_name: str = ""
    bootstrap_epoch: int = 0
    initial_power_table: str | None = None
    pause: bool = False
    protocol_version: int = 0
    initial_instance: int = 0
    explicit_power: tuple[PowerEntry, ...] = ()
    ignore_ec_power: bool = False
    committee_lookback: int = 0
    catch_up_alignment: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def with_initial_power_table(self, cid: str | None) -> Manifest:
        return replace(self, initial_power_table=cid, extra=copy.deepcopy(self.extra))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        return cls(
            network_name=data.get("NetworkName") or "",
            bootstrap_epoch=int(data.get("BootstrapEpoch") or 0),
            initial_power_table=decode_cid(data.get("InitialPowerTable")),
            pause=bool(data.get("Pause", False)),
            protocol_version=int(data.get("ProtocolVersion") or 0),
            initial_instance=int(data.get("InitialInstance") or 0),
            explicit_power=decode_power_entries(data.get("ExplicitPower")),
            ignore_ec_power=bool(data.get("IgnoreECPower", False)),
            committee_lookback=int(data.get("CommitteeLookback") or 0),
            catch_up_alignment=int(data.get("CatchUpAlignment") or 0),
            extra={k: v for k, v in data.items() if k not in _MANIFEST_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out.update({
            "Pause": self.pause,
            "ProtocolVersion": self.protocol_version,
            "InitialInstance": self.initial_instance,
            "BootstrapEpoch": self.bootstrap_epoch,
            "NetworkName": self.network_name,
            "ExplicitPower": encode_power_entries(self.explicit_power) or None,
            "IgnoreECPower": self.ignore_ec_power,
            "InitialPowerTable": encode_cid(self.initial_power_table),
            "CommitteeLookback": self.committee_lookback,
            "CatchUpAlignment": self.catch_up_alignment,
        })
        return out


# ═══════════════════════════════════════════════════════════════════
# Host node types
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TipSet:
    """A tipset as reported by the host node."""
    key: bytes
    epoch: int
    beacon: bytes = b""
    timestamp: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TipSet:
        return cls(
            key=decode_bytes(data.get("key")),
            epoch=int(data.get("epoch", 0)),
            beacon=decode_bytes(data.get("beacon")),
            timestamp=int(data.get("timestamp", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": encode_bytes(self.key),
            "epoch": self.epoch,
            "beacon": encode_bytes(self.beacon),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Signature:
    type: int
    data: bytes

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Signature:
        return cls(type=int(data.get("Type", 0)), data=decode_bytes(data.get("Data")))

    def to_dict(self) -> dict[str, Any]:
        return {"Type": self.type, "Data": encode_bytes(self.data)}


@dataclass(frozen=True)
class VersionInfo:
    api_version: int
    block_delay: int
    version: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VersionInfo:
        return cls(
            api_version=int(data.get("APIVersion", 0)),
            block_delay=int(data.get("BlockDelay", 0)),
            version=data.get("Version", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "APIVersion": self.api_version,
            "BlockDelay": self.block_delay,
            "Version": self.version,
        }


@dataclass(frozen=True)
class AddrInfo:
    """Peer identity and listen multiaddrs of the host node."""
    id: str
    addrs: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AddrInfo:
        return cls(id=data.get("ID", ""), addrs=tuple(data.get("Addrs") or ()))

    def to_dict(self) -> dict[str, Any]:
        return {"ID": self.id, "Addrs": list(self.addrs)}
