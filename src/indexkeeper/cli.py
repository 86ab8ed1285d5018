"""CLI entry point for indexkeeper."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    from indexkeeper.config.settings import Settings
    from indexkeeper.observability.logging import setup_logging

    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: Config file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
        settings = Settings.from_yaml(config_path)
    else:
        settings = Settings()

    if args.log_level:
        settings.observability.log_level = args.log_level
    setup_logging(settings.observability)

    definition: dict[str, Any] | None = None
    if getattr(args, "mapping", None):
        mapping_path = Path(args.mapping)
        if not mapping_path.exists():
            print(f"Error: Mapping file not found: {mapping_path}", file=sys.stderr)
            sys.exit(1)
        try:
            definition = json.loads(mapping_path.read_text())
        except json.JSONDecodeError as e:
            print(f"Error: Mapping file {mapping_path} is not valid JSON: {e}", file=sys.stderr)
            sys.exit(1)

    from indexkeeper.exceptions import IndexKeeperError
    from indexkeeper.transport.base.exceptions import TransportError

    try:
        output = asyncio.run(_run(args.command, args.name, settings, definition))
    except (IndexKeeperError, TransportError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(output, indent=2))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="indexkeeper",
        description="indexkeeper — Zero-downtime index management",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"indexkeeper {_get_version()}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Create the first generation of a logical index")
    create.add_argument("name", help="Logical index name")
    create.add_argument("--mapping", "-m", type=str, default=None, help="JSON file with the index definition")

    remap = commands.add_parser(
        "remap",
        help="Migrate a logical index to a new definition",
        description=(
            "Writes issued by other processes are not mirrored to the new index; "
            "pause them or run the migration inside the writing application."
        ),
    )
    remap.add_argument("name", help="Logical index name")
    remap.add_argument("--mapping", "-m", type=str, default=None, help="JSON file with the new index definition")

    for command, help_text in (
        ("delete", "Delete every generation of a logical index"),
        ("recover", "Delete generations left behind by interrupted migrations"),
        ("status", "Show the generations of a logical index and where the alias points"),
    ):
        sub = commands.add_parser(command, help=help_text)
        sub.add_argument("name", help="Logical index name")

    return parser


async def _run(command: str, name: str, settings: Any, definition: dict[str, Any] | None) -> dict[str, Any]:
    from indexkeeper.core.coordinator import RemapCoordinator
    from indexkeeper.core.index import generation_pattern
    from indexkeeper.core.write_guard import WriteGuard
    from indexkeeper.strategies.alias_index import AliasIndex
    from indexkeeper.transport.base.registry import default_registry

    transport = await default_registry().from_settings(settings.transport)
    try:
        guard = WriteGuard(
            transport,
            max_retries=settings.migration.max_retries,
            retry_backoff=settings.migration.retry_backoff,
        )
        coordinator = RemapCoordinator(transport, guard, settings.migration)
        index = AliasIndex(transport, name, definition=definition, coordinator=coordinator)

        if command == "create":
            await index.create()
        elif command == "delete":
            await index.delete()
        elif command == "remap":
            handle = await index.remap()
            return {
                "id": handle.id,
                "state": handle.state.value,
                "source": handle.source,
                "target": handle.target,
                "copied": handle.copied,
                "elapsed_ms": handle.elapsed_ms,
            }
        elif command == "recover":
            return {"deleted": await coordinator.recover(name)}

        bound = await index.resolver.bound_indices(name)
        pattern = generation_pattern(name)
        generations = [g for g in await transport.list_indices(f"{name}-*") if pattern.match(g)]
        return {
            "name": name,
            "bound": bound,
            "generations": generations,
            "documents": await index.count() if bound else 0,
        }
    finally:
        await transport.shutdown()


def _get_version() -> str:
    """Get the package version."""
    try:
        from indexkeeper import __version__

        return __version__
    except ImportError:
        return "unknown"


if __name__ == "__main__":
    main()
