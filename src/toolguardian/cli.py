"""Command-line interface for toolguardian."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from toolguardian.adjudicator import resolve_constitution
from toolguardian.config import (
    GuardianConfig,
    agent_rules,
    effective_threshold,
    load_config,
)
from toolguardian.errors import ConfigError
from toolguardian.risk import normalize_tool_name, resolve_trust_level
from toolguardian.rules import compile_rules, evaluate_rules
from toolguardian.types import TrustLevel

TRUST_CHOICES = tuple(level.value for level in TrustLevel)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="toolguardian", add_help=True)
    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show guardian configuration")
    status_parser.add_argument("config_path", type=Path, help="Path to guardian config JSON")

    test_parser = subparsers.add_parser("test", help="Dry-run a tool call through Tier 1 rules")
    test_parser.add_argument("config_path", type=Path, help="Path to guardian config JSON")
    test_parser.add_argument("tool_name", help="Tool name to evaluate")
    test_parser.add_argument("--params", default="{}", help="Tool parameters as JSON")
    test_parser.add_argument(
        "--trust", choices=TRUST_CHOICES, default="unknown", help="Trust level of the caller"
    )
    test_parser.add_argument("--agent", help="Agent id for per-agent rules")
    test_parser.add_argument("--json", action="store_true", help="Output JSON")

    constitution_parser = subparsers.add_parser(
        "constitution", help="Print the constitution the adjudicator would use"
    )
    constitution_parser.add_argument("config_path", type=Path, help="Path to guardian config JSON")
    constitution_parser.add_argument("--agent", help="Agent id for a per-agent constitution")

    return parser.parse_args(argv)


def _constitution_source(config: GuardianConfig) -> str:
    if config.constitution_path:
        return config.constitution_path
    if config.constitution:
        return f"inline ({len(config.constitution)} chars)"
    return "default"


def _cmd_status(config: GuardianConfig, console: Console) -> int:
    if not config.enabled:
        console.print("Guardian: disabled")
        return 0

    console.print("Guardian: enabled")
    console.print(f"Approval threshold: {config.approval_threshold.value}")
    console.print(f"Timeout: {config.approval_timeout_ms / 1000:g}s")
    console.print(f"Rules: {len(config.rules)}")
    console.print(f"Constitution: {escape(_constitution_source(config))}")

    budget = config.budget
    if budget is not None and budget.enabled:
        console.print()
        console.print("Budget:")
        if budget.session_limit is not None:
            console.print(f"  Session limit: ${budget.session_limit:g}")
        if budget.daily_limit is not None:
            console.print(f"  Daily limit: ${budget.daily_limit:g}")
        console.print(f"  Default tool cost: ${budget.default_tool_cost:g}")
        console.print(f"  On exceeded: {budget.on_exceeded}")

    if config.agents:
        table = Table(title="Per-agent overrides")
        table.add_column("Agent")
        table.add_column("Threshold")
        table.add_column("Rules", justify="right")
        table.add_column("Budget")
        for agent_id, override in sorted(config.agents.items()):
            table.add_row(
                escape(agent_id),
                override.approval_threshold.value if override.approval_threshold else "-",
                str(len(override.rules)),
                "override" if override.budget is not None else "-",
            )
        console.print()
        console.print(table)
    return 0


def _cmd_test(
    config: GuardianConfig,
    *,
    tool_name: str,
    params_json: str,
    trust: str,
    agent_id: str | None,
    json_output: bool,
    console: Console,
    err_console: Console,
) -> int:
    if not config.enabled:
        err_console.print("Guardian is not enabled in this config")
        return 1
    try:
        params = json.loads(params_json)
    except json.JSONDecodeError:
        err_console.print("invalid --params JSON")
        return 2
    if not isinstance(params, dict):
        err_console.print("--params must be a JSON object")
        return 2

    trust_level = resolve_trust_level(
        sender_is_owner=trust == TrustLevel.OWNER.value,
        is_subagent=trust == TrustLevel.SUBAGENT.value,
        is_allowed=trust == TrustLevel.ALLOWED.value,
    )
    tool = normalize_tool_name(tool_name)
    result = evaluate_rules(
        tool_name=tool,
        params=params,
        threshold=effective_threshold(config, agent_id),
        trust_level=trust_level,
        agent_rules=compile_rules(agent_rules(config, agent_id)),
        global_rules=compile_rules(config.rules),
    )

    if json_output:
        payload = {"tool": tool, **result.model_dump(mode="json")}
        print(json.dumps(payload, ensure_ascii=False))
        return 0

    table = Table(show_header=True)
    table.add_column("Field")
    table.add_column("Value", overflow="fold")
    table.add_row("Tool", escape(tool))
    table.add_row("Risk level", result.risk_level.value)
    table.add_row("Trust level", result.trust_level.value)
    table.add_row("Decision", result.decision.value)
    table.add_row("Reason", escape(result.reason))
    if result.rule_label:
        table.add_row("Rule", escape(result.rule_label))
    console.print(table)
    return 0


def _cmd_constitution(config: GuardianConfig, agent_id: str | None, console: Console) -> int:
    console.print(
        resolve_constitution(config, agent_id), markup=False, highlight=False, soft_wrap=True
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    console = Console(highlight=False)
    err_console = Console(stderr=True, highlight=False)

    try:
        config = load_config(args.config_path)
    except ConfigError as exc:
        err_console.print(f"config error: {escape(str(exc))}")
        return 2

    try:
        if args.command == "status":
            return _cmd_status(config, console)
        if args.command == "test":
            return _cmd_test(
                config,
                tool_name=args.tool_name,
                params_json=args.params,
                trust=args.trust,
                agent_id=args.agent,
                json_output=args.json,
                console=console,
                err_console=err_console,
            )
        if args.command == "constitution":
            return _cmd_constitution(config, args.agent, console)
    except OSError as exc:
        err_console.print(f"{args.command} failed: {escape(str(exc))}")
        return 1
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
