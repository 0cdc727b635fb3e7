"""
Command line interface: `vaultmode <command>`.

Exit codes: 0 success, no-op or cancelled; 1 operation or validation failed;
2 invalid arguments.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from vaultmode.container import VaultModeContainer, create_container
from vaultmode.exceptions import VaultModeError
from vaultmode.lifecycle.controller import SwitchResult, SwitchStrategy
from vaultmode.lifecycle.validator import CheckLevel
from vaultmode.types import VaultMode
from vaultmode.utils import format_size

LOGGER = logging.getLogger("vaultmode.cli")

_LEVEL_MARKS = {
    CheckLevel.PASS: "✓",
    CheckLevel.INFO: "ℹ",
    CheckLevel.WARN: "⚠",
    CheckLevel.FAIL: "✗",
}


def _mode(value: str) -> VaultMode:
    try:
        return VaultMode.from_string(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _print_lines(lines: list[str], indent: str = "  ") -> None:
    for line in lines:
        print(f"{indent}{line}")


# ============================================================================
# Command handlers
# ============================================================================


def cmd_status(container: VaultModeContainer, args: argparse.Namespace) -> int:
    status = container.mode_controller().get_status()

    if args.json:
        print(json.dumps(asdict(status), indent=2, default=str))
        return 0

    def _flag(value: bool | None, yes: str = "yes", no: str = "no") -> str:
        return "unknown" if value is None else (yes if value else no)

    print(f"Mode:           {status.mode.value}{'' if status.configured else ' (default, no mode file)'}")
    print(f"Auto-unseal:    {'on' if status.auto_unseal else 'off'}")
    print(f"Launch command: {status.launch_command}")
    print(f"Vault address:  {status.vault_addr}")
    print(f"Container:      {_flag(status.running, 'running', 'stopped')}")
    print(f"Reachable:      {_flag(status.reachable)}")
    if status.reachable:
        print(f"Initialized:    {_flag(status.initialized)}")
        print(f"Sealed:         {_flag(status.sealed)}")
        if status.version:
            print(f"Version:        {status.version}")
    storage = format_size(status.storage_size) if status.storage_present else "none"
    print(f"Durable storage: {storage}{'' if status.storage_consistent else '  ⚠ does not match mode'}")
    print(f"Unseal keys:    {'present' if status.keys_present else 'none'}")
    print(f"Backups:        {status.backup_count}" + (f" (latest {status.latest_backup})" if status.latest_backup else ""))
    return 0


def _report_switch(result: SwitchResult) -> int:
    print(result.message)
    migration = result.migration
    if migration is not None:
        if migration.backup is not None:
            print(f"Backup: {migration.backup.path}")
        if migration.restore is not None:
            print(f"Restore: {migration.restore.summary()}")
        if migration.warnings:
            print("Warnings:")
            _print_lines(migration.warnings)
        if migration.recovery:
            print("Recovery:")
            _print_lines(migration.recovery)
    return 0 if result.ok else 1


def cmd_switch(container: VaultModeContainer, args: argparse.Namespace) -> int:
    strategy = SwitchStrategy(args.strategy) if args.strategy else None
    result = container.mode_controller().switch_mode(args.mode, interactive=not args.yes, strategy=strategy)
    return _report_switch(result)


def cmd_migrate(container: VaultModeContainer, args: argparse.Namespace) -> int:
    controller = container.mode_controller()
    declared = controller.current_mode()
    if args.source is not declared:
        print(f"Declared mode is {declared.value}, not {args.source.value}; refusing to migrate")
        return 1

    if not args.yes:
        prompt = container.prompt()
        answer = prompt(f"Migrate secrets from {args.source.value} to {args.target.value}? (y/N) ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Migration cancelled")
            return 0

    result = controller.switch_mode(args.target, interactive=False, strategy=SwitchStrategy.MIGRATE)
    return _report_switch(result)


def cmd_rollback(container: VaultModeContainer, args: argparse.Namespace) -> int:
    report = container.migration_engine().rollback_from(args.backup_dir)
    print(f"Rollback from {report.backup_dir}: {report.summary()}")
    for path, error in report.failed.items():
        print(f"  ✗ {path}: {error}")
    return 1 if report.degraded else 0


def cmd_unseal(container: VaultModeContainer, args: argparse.Namespace) -> int:
    report = container.unseal_agent().attempt_unseal()
    print(report.message)
    _print_lines(report.guidance)
    return 0 if report.ok else 1


def cmd_post_start(container: VaultModeContainer, args: argparse.Namespace) -> int:
    result = container.startup_hook().run()
    if result.unseal is not None:
        print(result.unseal.message)
    _print_lines(result.guidance)
    return 0 if result.ok else 1


def cmd_launch_command(container: VaultModeContainer, args: argparse.Namespace) -> int:
    print(container.startup_hook().launch_command())
    return 0


def cmd_validate(container: VaultModeContainer, args: argparse.Namespace) -> int:
    report = container.validator().validate()
    for check in report.checks:
        print(f"{_LEVEL_MARKS[check.level]} [{check.name}] {check.message}")
        _print_lines(check.remedy, indent="    ")

    print()
    print(
        f"Passed: {report.count(CheckLevel.PASS)}  Warnings: {report.count(CheckLevel.WARN)}  "
        f"Failed: {report.count(CheckLevel.FAIL)}  →  {report.level.value.upper()}"
    )
    return 0 if report.passed else 1


def cmd_backups(container: VaultModeContainer, args: argparse.Namespace) -> int:
    records = container.mode_controller().list_backups()
    if not records:
        print("No backups.")
        return 0

    for record in records:
        meta = record.metadata
        flags = "" if meta.reachable else "  (empty: Vault was unreachable)"
        failures = len(meta.failed_paths) + len(meta.failed_namespaces)
        if failures:
            flags += f"  ({failures} failed)"
        print(
            f"{record.name}  {meta.source_mode} → {meta.target_mode}  "
            f"{meta.secret_count} secret(s){flags}"
        )
    return 0


def cmd_auto_unseal(container: VaultModeContainer, args: argparse.Namespace) -> int:
    config = container.mode_controller().set_auto_unseal(args.state == "on")
    print(f"Auto-unseal {'enabled' if config.auto_unseal else 'disabled'}")
    if config.mode is VaultMode.EPHEMERAL:
        print("  (takes effect in durable mode; ephemeral Vault is never sealed)")
    return 0


def cmd_reset(container: VaultModeContainer, args: argparse.Namespace) -> int:
    container.mode_controller().reset(confirmed=args.yes)
    return 0


# ============================================================================
# Parser
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultmode",
        description="Manage a local Vault between ephemeral and durable modes",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--project-root", type=Path, default=None, help="Directory to find .vaultmode.yaml from")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_status = subparsers.add_parser("status", help="Show declared mode and Vault state")
    p_status.add_argument("--json", action="store_true", help="Machine-readable output")
    p_status.set_defaults(func=cmd_status)

    p_switch = subparsers.add_parser("switch", help="Switch to another mode")
    p_switch.add_argument("mode", type=_mode, help="ephemeral or durable")
    strategy = p_switch.add_mutually_exclusive_group()
    strategy.add_argument("--migrate", dest="strategy", action="store_const", const="migrate", help="Migrate secrets")
    strategy.add_argument(
        "--discard", dest="strategy", action="store_const", const="discard", help="Switch without migrating secrets"
    )
    p_switch.add_argument("--yes", action="store_true", help="Do not prompt (requires --migrate or --discard)")
    p_switch.set_defaults(func=cmd_switch, strategy=None)

    p_migrate = subparsers.add_parser("migrate", help="Migrate secrets between modes")
    p_migrate.add_argument("--from", dest="source", type=_mode, required=True)
    p_migrate.add_argument("--to", dest="target", type=_mode, required=True)
    p_migrate.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    p_migrate.set_defaults(func=cmd_migrate)

    p_rollback = subparsers.add_parser("rollback", help="Restore secrets from a backup into the running Vault")
    p_rollback.add_argument("backup_dir", type=Path)
    p_rollback.set_defaults(func=cmd_rollback)

    subparsers.add_parser("unseal", help="Unseal a durable Vault with stored keys").set_defaults(func=cmd_unseal)
    subparsers.add_parser("post-start", help="Apply the start-up unseal policy").set_defaults(func=cmd_post_start)
    subparsers.add_parser("launch-command", help="Print the declared Vault server command").set_defaults(
        func=cmd_launch_command
    )
    subparsers.add_parser("validate", help="Check the Vault setup").set_defaults(func=cmd_validate)
    subparsers.add_parser("backups", help="List backups, newest first").set_defaults(func=cmd_backups)

    p_auto = subparsers.add_parser("auto-unseal", help="Enable or disable automatic unsealing")
    p_auto.add_argument("state", choices=["on", "off"])
    p_auto.set_defaults(func=cmd_auto_unseal)

    p_reset = subparsers.add_parser("reset", help="Wipe durable storage and keys, return to ephemeral")
    p_reset.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    p_reset.set_defaults(func=cmd_reset)

    return parser


def main(argv: list[str] | None = None, container: VaultModeContainer | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "switch" and args.yes and args.strategy is None:
        parser.error("switch --yes requires --migrate or --discard")
    if args.command == "migrate" and args.source is args.target:
        parser.error("--from and --to must be different modes")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s" if args.verbose else "%(message)s",
    )

    try:
        container = container or create_container(args.project_root)
        return args.func(container, args)
    except VaultModeError as e:
        LOGGER.error(f"✗ {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 1


if __name__ == "__main__":
    sys.exit(main())
