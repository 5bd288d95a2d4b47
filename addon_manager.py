"""Command-line interface for the addon manager."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from addon_engine import AddonEngine
from addon_errors import AddonManagerError
from addon_models import PipelineStep
from logging_config import setup_logging
from manager_settings import DEFAULT_SETTINGS, ManagerSettings

log = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".addon-manager"


def _print_notice(message, level="info"):
    stream = sys.stderr if level in ("warning", "error") else sys.stdout
    print(f"[{level}] {message}", file=stream)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Install, update and remove game addons")
    parser.add_argument("--config-dir", type=Path, default=DEFAULT_CONFIG_DIR, help="Settings and log directory")
    parser.add_argument("--game-path", help="Game directory or executable (overrides the saved setting)")
    parser.add_argument("--log-level", help="Logging level (overrides the saved setting)")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("scan", help="List installed addons and conflicts")
    commands.add_parser("update-all", help="Update every outdated addon")

    install = commands.add_parser("install", help="Install an addon by catalog id")
    install.add_argument("addon_id", type=int)
    install.add_argument("--reinstall", action="store_true", help="Reinstall over the current copy")
    install.add_argument("--yes", action="store_true", help="Remove bundled addons without asking")

    delete = commands.add_parser("delete", help="Uninstall an addon by catalog id")
    delete.add_argument("addon_id", type=int)
    delete.add_argument("--keep", type=int, action="append", default=[], help="Bundled addon id to keep")

    commands.add_parser("export", help="Print a share code for the installed addons")

    import_cmd = commands.add_parser("import", help="Install the addons of a share code")
    import_cmd.add_argument("code")

    config = commands.add_parser("config", help="Show or change settings")
    config.add_argument("key", nargs="?", choices=sorted(DEFAULT_SETTINGS))
    config.add_argument("value", nargs="?")
    return parser


def _cmd_config(settings, args) -> int:
    if args.key is None:
        for key, value in sorted(settings.get_all_settings().items()):
            if key == "github_token" and value:
                value = "********"
            print(f"{key} = {value}")
        return 0
    if args.value is None:
        print(settings.get_setting(args.key))
        return 0
    return 0 if settings.set_setting(args.key, args.value) else 1


def _cmd_scan(engine) -> int:
    result = engine.scan()
    for folder, addon in sorted(result.installed.items()):
        flags = []
        if addon.needs_update:
            flags.append("update available")
        if addon.corrupted:
            flags.append(f"missing {', '.join(sorted(addon.missing_folders))}")
        suffix = f" ({'; '.join(flags)})" if flags else ""
        print(f"{addon.id:>6}  {folder:<32} {addon.local_version:<10} {addon.entry.title}{suffix}")
    for conflict in result.conflicts:
        names = ", ".join(f"{c.title} [{c.id}]" for c in conflict.candidates)
        print(f"conflict  {conflict.folder}: {names}")
    for error in result.errors:
        print(f"skipped   {error}")
    print(f"Installed: {len(result.installed)}, conflicts: {len(result.conflicts)}")
    return 0


def _cmd_install(engine, args) -> int:
    entry = engine.find_entry(args.addon_id)
    if entry is None:
        _print_notice(f"Addon {args.addon_id} not found in the catalog", "error")
        return 1
    state = engine.install(entry, reinstall=args.reinstall, skip_bundle_check=args.yes)
    if state.step is PipelineStep.NEEDS_CONFIRMATION:
        titles = ", ".join(addon.entry.title for addon in state.bundled)
        _print_notice(f"Installing {entry.title} removes bundled addons: {titles}. Rerun with --yes.", "warning")
        return 2
    return 0 if state.succeeded else 1


def _cmd_delete(engine, args) -> int:
    target = engine.find_installed(args.addon_id)
    if target is None:
        _print_notice(f"Addon {args.addon_id} is not installed", "error")
        return 1
    report = engine.delete(target, keep_ids=args.keep)
    for folder in report.protected:
        print(f"kept     {folder}")
    for folder in report.deleted:
        print(f"deleted  {folder}")
    for folder, reason in report.failed.items():
        print(f"failed   {folder}: {reason}")
    return 0 if report.success else 1


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = ManagerSettings(args.config_dir)
    setup_logging(args.config_dir, args.log_level or settings.get_setting("log_level"))

    if args.command == "config":
        return _cmd_config(settings, args)

    if args.game_path:
        settings.data["settings"]["game_path"] = args.game_path

    try:
        engine = AddonEngine.from_settings(settings, notify=_print_notice)
        engine.load_catalog()
        engine.scan()

        if args.command == "scan":
            return _cmd_scan(engine)
        if args.command == "update-all":
            summary = engine.update_all(
                on_progress=lambda title, current, total: print(f"[{current}/{total}] {title}")
            )
            return 1 if summary.failed else 0
        if args.command == "install":
            return _cmd_install(engine, args)
        if args.command == "delete":
            return _cmd_delete(engine, args)
        if args.command == "export":
            print(engine.export_code())
            return 0
        if args.command == "import":
            summary = engine.import_code(args.code)
            return 1 if summary.failed else 0
    except AddonManagerError as e:
        log.error("%s", e)
        _print_notice(str(e), "error")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
