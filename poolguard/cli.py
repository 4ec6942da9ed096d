from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import PoolGuardConfig, set_config
from .observability import setup_logging
from .simulations.oversubscription_demo import DemoConfig, run_demo


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="poolguard",
        description="PoolGuard CLI - claim adjudication and payout simulation",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Config file (JSON, TOML or YAML)",
    )
    subparsers = parser.add_subparsers(dest="command")

    demo = subparsers.add_parser("demo", help="Run the oversubscription demo")
    demo.add_argument("--members", type=int, default=6, help="Number of pool members")
    demo.add_argument("--validators", type=int, default=5, help="Number of validators")
    demo.add_argument("--committee", type=int, default=3, help="Committee size")
    demo.add_argument("--seed", type=int, default=7, help="Vote simulation seed")
    demo.add_argument("--json", action="store_true", help="Print the summary as JSON")
    demo.add_argument("--quiet", action="store_true", help="Reduce output verbosity")

    subparsers.add_parser("config", help="Print the effective configuration")
    return parser


def _load_config(path: Optional[str]) -> PoolGuardConfig:
    config = PoolGuardConfig.load(Path(path) if path else None)
    set_config(config)
    return config


def _run_demo(args: argparse.Namespace, config: PoolGuardConfig) -> None:
    demo_config = DemoConfig(
        num_members=args.members,
        num_validators=args.validators,
        committee_size=args.committee,
        seed=args.seed,
        verbose=not (args.quiet or args.json),
    )
    summary = run_demo(demo_config, config)
    if args.json:
        print(json.dumps(summary, indent=2, default=str))


def main(argv: Optional[Sequence[str]] = None) -> None:
    effective_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()
    args = parser.parse_args(effective_argv)

    config = _load_config(args.config)
    if getattr(args, "json", False):
        # keep stdout parseable
        config.logging.level = "WARNING"
    setup_logging(config.logging)

    if args.command == "config":
        print(config.to_json())
        return
    if args.command in (None, "demo"):
        if args.command is None:
            args = parser.parse_args([*effective_argv, "demo"])
        _run_demo(args, config)
        return
    raise ValueError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    main()
