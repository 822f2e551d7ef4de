"""
F3 Sidecar: CLI

Usage:
    # Run the sidecar (flags override sidecar.yaml, config/{env}.yaml and SIDECAR_* vars)
    python -m sidecar run \\
        --rpc-endpoint 127.0.0.1:2345/rpc/v1 \\
        --jwt "$FULLNODE_API_TOKEN" \\
        --f3-rpc-endpoint 127.0.0.1:23456 \\
        --finality 900 \\
        --db /var/lib/f3 \\
        --engine-factory my_engine.binding:create_engine

    # Show the effective configuration (token redacted)
    python -m sidecar config

    # Check the host node answers the capability RPCs the engine needs first
    python -m sidecar check-host --rpc-endpoint 127.0.0.1:2345/rpc/v1 --jwt "$TOKEN"

Exit codes: 0 clean exit, 1 retry budget exhausted or host check failed,
2 configuration defect.
"""

import argparse
import json
import signal
import sys
from pathlib import Path

import yaml

from sidecar.config import SidecarConfig, load_config
from sidecar.errors import ConfigError, ContractIncomplete, EngineFactoryError, SidecarError
from sidecar.logging import initialize
from sidecar.rpc import JsonRpcClient, RemoteCapabilities
from sidecar.runtime import Sidecar

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _overrides(args) -> dict:
    """CLI flags as dotted config keys. Unset flags stay None and are ignored."""
    return {
        "host.rpc_endpoint": getattr(args, "rpc_endpoint", None),
        "host.jwt": getattr(args, "jwt", None),
        "f3.rpc_endpoint": getattr(args, "f3_rpc_endpoint", None),
        "f3.initial_power_table": getattr(args, "initial_power_table", None),
        "f3.bootstrap_epoch": getattr(args, "bootstrap_epoch", None),
        "f3.finality": getattr(args, "finality", None),
        "f3.db": getattr(args, "db", None),
        "engine.factory": getattr(args, "engine_factory", None),
        "supervisor.max_retries": getattr(args, "max_retries", None),
        "supervisor.backoff_seconds": getattr(args, "backoff", None),
        "logging.level": getattr(args, "log_level", None),
        "logging.format": getattr(args, "log_format", None),
    }


def _load(args) -> SidecarConfig:
    data = load_config(env=args.env, project_root=args.project_root)
    return SidecarConfig.from_dict(data, _overrides(args))


def cmd_run(args) -> int:
    """Run the engine under supervision until it exits or gives up."""
    try:
        cfg = _load(args)
        if args.no_server:
            cfg.server_enabled = False
        initialize(cfg.logging)
        sidecar = Sidecar(cfg).build()
    except (ContractIncomplete, ConfigError, EngineFactoryError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    def _on_signal(signum, frame):
        print(f"Received signal {signum}, stopping after the current attempt", file=sys.stderr)
        sidecar.stop()

    signal.signal(signal.SIGTERM, _on_signal)

    try:
        result = sidecar.run()
    except ContractIncomplete as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    return EXIT_OK if result else EXIT_FAILED


def cmd_config(args) -> int:
    """Print the effective configuration."""
    try:
        cfg = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    p = cfg.params
    out = {
        "host": {
            "rpc_endpoint": p.rpc_endpoint,
            "jwt": "***" if p.jwt else "",
            "timeout_seconds": cfg.rpc_timeout,
        },
        "f3": {
            "rpc_endpoint": p.f3_rpc_endpoint,
            "initial_power_table": p.initial_power_table,
            "bootstrap_epoch": p.bootstrap_epoch,
            "finality": p.finality,
            "db": p.db,
        },
        "engine": {"factory": cfg.engine_factory},
        "supervisor": {
            "max_retries": cfg.retry.max_retries,
            "backoff_seconds": cfg.retry.backoff_seconds,
        },
        "server": {"enabled": cfg.server_enabled},
        "logging": {
            "level": cfg.logging.level,
            "format": cfg.logging.format,
            "components": cfg.logging.components,
        },
    }
    print(yaml.safe_dump(out, sort_keys=False), end="")
    return EXIT_OK


def cmd_check_host(args) -> int:
    """Call the host-node capabilities that have no side effects."""
    try:
        cfg = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    p = cfg.params
    with JsonRpcClient(p.rpc_endpoint, token=p.jwt, timeout=cfg.rpc_timeout) as client:
        caps = RemoteCapabilities(client)
        try:
            version = caps.version()
            network = caps.get_raw_network_name()
            head = caps.get_head()
            addrs = caps.net_addrs_listen()
        except SidecarError as e:
            print(f"Host check failed: {e}", file=sys.stderr)
            return EXIT_FAILED

    print(json.dumps({
        "version": version.to_dict(),
        "network": network,
        "head_epoch": head.epoch,
        "peer": addrs.to_dict(),
    }, indent=2))
    return EXIT_OK


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--rpc-endpoint", help="Host node JSON-RPC endpoint")
    p.add_argument("--jwt", help="Host node auth token")
    p.add_argument("--f3-rpc-endpoint", help="Address to serve F3 queries on")
    p.add_argument("--initial-power-table", help="Initial power table CID")
    p.add_argument("--bootstrap-epoch", type=int)
    p.add_argument("--finality", type=int)
    p.add_argument("--db", help="Engine database path")
    p.add_argument("--engine-factory", help="Engine factory as module:callable")
    p.add_argument("--max-retries", type=int)
    p.add_argument("--backoff", type=float, help="Seconds between retries")
    p.add_argument("--log-level")
    p.add_argument("--log-format", choices=["json", "text"])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="f3-sidecar",
        description="F3 Sidecar: supervised fast-finality engine for a host node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--env", default=None, help="Config profile (default: SIDECAR_ENV or dev)")
    parser.add_argument(
        "--project-root", default=None,
        help="Directory holding sidecar.yaml and config/ (default: SIDECAR_PROJECT_ROOT or .)",
    )

    subs = parser.add_subparsers(dest="command", help="Command")

    run_p = subs.add_parser("run", help="Run the engine under supervision")
    _add_common(run_p)
    run_p.add_argument("--no-server", action="store_true", help="Do not serve F3 queries")

    config_p = subs.add_parser("config", help="Show the effective configuration")
    _add_common(config_p)

    check_p = subs.add_parser("check-host", help="Check the host node capability RPCs")
    _add_common(check_p)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_FAILED

    if args.project_root and not Path(args.project_root).is_dir():
        print(f"Error: project root not found: {args.project_root}", file=sys.stderr)
        return EXIT_CONFIG

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "config":
        return cmd_config(args)
    elif args.command == "check-host":
        return cmd_check_host(args)
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
