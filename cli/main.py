"""Command line interface for synthesizing the haiku board topology."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable

import boto3

from cli import config, output
from core.assembler import Topology
from core.blueprint import synthesize_haiku
from core.errors import TopologyError
from core.policy.simulator import PolicySimulator


class CLIError(Exception):
    def __init__(self, message: str, exit_code: int = 2) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bashoutter", description="Haiku board topology composer")
    parser.add_argument("--config", type=Path, default=Path("bashoutter.yml"), help="Path to configuration file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log synthesis steps")

    subparsers = parser.add_subparsers(dest="command", required=True)

    synth_cmd = subparsers.add_parser("synth", help="Emit the full topology manifest")
    order_cmd = subparsers.add_parser("order", help="Show synthesis order and dependencies")
    routes_cmd = subparsers.add_parser("routes", help="Show the composed routing table")
    grants_cmd = subparsers.add_parser("grants", help="Show grants and policy documents")
    verify_cmd = subparsers.add_parser("verify", help="Check function policies against their routes")
    verify_cmd.add_argument("--use-iam", action="store_true", help="Evaluate with the IAM policy simulator")

    for command in (synth_cmd, order_cmd, routes_cmd, grants_cmd, verify_cmd):
        command.add_argument("--stage", help="Override the configured stage name")
        command.add_argument("--output", type=Path)
        command.add_argument("--format", choices=["json", "md", "table"], help="Output format override")

    return parser


def app(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = _load_settings(args.config)
        merged = settings.merge_cli(format_override=args.format, stage_override=args.stage)
        topology = synthesize_haiku(merged)
        for entry in topology.audit:
            print(f"Warning: {entry}", file=sys.stderr)
        return COMMANDS[args.command](args, topology, merged)
    except TopologyError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except CLIError as exc:
        print(exc, file=sys.stderr)
        return exc.exit_code
    except Exception as exc:  # pragma: no cover - unexpected errors bubble up
        print(f"Error: {exc}", file=sys.stderr)
        return 1


# ---------------------------------------------------------------------------
# Command implementations


def _cmd_synth(args: argparse.Namespace, topology: Topology, settings: config.Settings) -> int:
    output.emit(topology.manifest(), settings.default_format, output_path=args.output)
    return 0


def _cmd_order(args: argparse.Namespace, topology: Topology, settings: config.Settings) -> int:
    rows = [
        {
            "step": index,
            "resource": resource.logical_id,
            "kind": resource.kind,
            "depends_on": topology.dependencies.get(resource.logical_id, []),
        }
        for index, resource in enumerate(topology.resources, start=1)
    ]
    output.emit(rows, settings.default_format, output_path=args.output)
    return 0


def _cmd_routes(args: argparse.Namespace, topology: Topology, settings: config.Settings) -> int:
    rows: list[dict[str, Any]] = []
    rewrites: list[dict[str, Any]] = []
    for distribution, table in topology.routing.items():
        for entry in table.entries:
            rows.append(
                {
                    "distribution": distribution,
                    "precedence": entry.precedence,
                    "pattern": entry.path_pattern,
                    "origin": entry.origin_id,
                    "origin_path": entry.origin_path,
                    "stage_variables": entry.stage_variables,
                    "ttl": f"{entry.min_ttl}/{entry.default_ttl}/{entry.max_ttl}",
                    "compress": entry.compress,
                    "methods": list(entry.allowed_methods),
                }
            )
        for response in table.error_responses:
            rewrites.append({"distribution": distribution, **response.model_dump()})

    if settings.default_format == "json":
        output.emit({"behaviors": rows, "errorResponses": rewrites}, "json", output_path=args.output)
    else:
        output.emit(rows, settings.default_format, output_path=args.output)
    return 0


def _cmd_grants(args: argparse.Namespace, topology: Topology, settings: config.Settings) -> int:
    rows = [
        {
            "principal": grant.principal,
            "resource": grant.resource,
            "capability": grant.capability.value,
            "policy": grant.policy_owner,
            "actions": list(grant.actions),
        }
        for grant in topology.grants
    ]
    if settings.default_format == "json":
        policies = {owner: doc.model_dump(by_alias=True, exclude_none=True) for owner, doc in topology.policies.items()}
        output.emit({"grants": rows, "policies": policies, "audit": topology.audit}, "json", output_path=args.output)
    else:
        output.emit(rows, settings.default_format, output_path=args.output)
    return 0


def _cmd_verify(args: argparse.Namespace, topology: Topology, settings: config.Settings) -> int:
    client = boto3.client("iam", region_name=settings.region) if args.use_iam else None
    simulator = PolicySimulator(client=client, region=settings.region)
    rows = simulator.verify(topology)
    output.emit(rows, settings.default_format, output_path=args.output)
    if any(row["decision"] != "Allow" for row in rows):
        return 3
    return 0


# ---------------------------------------------------------------------------
# Helpers


def _load_settings(path: Path) -> config.Settings:
    try:
        return config.load_settings(path)
    except ValueError as exc:
        raise CLIError(f"{path}: {exc}") from exc


COMMANDS: dict[str, Callable[[argparse.Namespace, Topology, config.Settings], int]] = {
    "synth": _cmd_synth,
    "order": _cmd_order,
    "routes": _cmd_routes,
    "grants": _cmd_grants,
    "verify": _cmd_verify,
}


def main() -> None:
    raise SystemExit(app())


if __name__ == "__main__":
    main()
