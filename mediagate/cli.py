from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .core.config import get_settings
from .core.errors import MediaError
from .media.adapters import check_tools
from .media.cache_key import derive_cache_key
from .media.dispatcher import ConversionDispatcher
from .media.sheets import parse_workbook
from .media.thumbnails import thumbnail_kind

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except MediaError as exc:
        console.print(f"[red]{exc.code}:[/] {exc.message}")
        if exc.remediation:
            console.print(f"[yellow]{exc.remediation}[/]")
        sys.exit(1)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI.

    Returns:
        The argument parser.
    """
    parser = argparse.ArgumentParser(description="Mediagate developer CLI")
    parser.add_argument("--check", action="store_true", help="Report which external conversion tools are installed")

    subparsers = parser.add_subparsers(dest="command")

    key_parser = subparsers.add_parser("key", help="Print the cache key for an identity and parameters")
    key_parser.add_argument("--identity", required=True, help="Identifying string, usually an absolute source path")
    key_parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Transform parameter; may be repeated.",
    )
    key_parser.set_defaults(func=_cmd_key)

    thumb_parser = subparsers.add_parser("thumb", help="Render a thumbnail for a local file")
    thumb_parser.add_argument("--file", required=True, help="Path to the source file")
    thumb_parser.add_argument("--out", required=True, help="Destination JPEG path")
    thumb_parser.set_defaults(func=_cmd_thumb)

    heic_parser = subparsers.add_parser("heic", help="Convert a local HEIC/HEIF file to JPEG")
    heic_parser.add_argument("--file", required=True, help="Path to the HEIC/HEIF file")
    heic_parser.add_argument("--out", required=True, help="Destination JPEG path")
    heic_parser.set_defaults(func=_cmd_heic)

    sheet_parser = subparsers.add_parser("sheet", help="Print the cells of a workbook as JSON")
    sheet_parser.add_argument("--file", required=True, help="Path to the .xlsx workbook")
    sheet_parser.set_defaults(func=_cmd_sheet)
    return parser


def _run_environment_check() -> None:
    statuses = asyncio.run(check_tools())
    table = Table(title="External tools")
    table.add_column("Tool")
    table.add_column("Command")
    table.add_column("Status")
    table.add_column("Version / install")
    for status in statuses:
        if status.installed:
            table.add_row(status.spec.name, status.spec.command, "[green]ok[/]", status.version or "")
        else:
            table.add_row(status.spec.name, status.spec.command, "[red]missing[/]", status.spec.install_command)
    console.print(table)
    if not all(status.installed for status in statuses):
        sys.exit(2)


def _parse_params(raw: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition("=")
        if not sep or not name:
            console.print(f"[red]Invalid --param {item!r}; expected NAME=VALUE[/]")
            sys.exit(2)
        params[name] = value
    return params


def _cmd_key(args: argparse.Namespace) -> None:
    console.print(derive_cache_key(args.identity, _parse_params(args.param)))


def _source_path(raw: str) -> Path:
    path = Path(raw).expanduser().resolve()
    if not path.is_file():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(2)
    return path


def _cmd_thumb(args: argparse.Namespace) -> None:
    """Render a thumbnail through the same chains the API uses.

    Args:
        args: The command-line arguments.
    """
    source = _source_path(args.file)
    target = Path(args.out).expanduser().resolve()
    kind = thumbnail_kind(source.suffix)
    if kind is None:
        console.print(f"[red]No thumbnail strategy for {source.suffix or 'files without extension'}[/]")
        sys.exit(2)

    dispatcher = ConversionDispatcher(get_settings())
    target.parent.mkdir(parents=True, exist_ok=True)

    async def _render() -> str:
        source_path = source
        if kind == "heic":
            intermediate = target.with_suffix(".full.jpg")
            await dispatcher.heic_to_jpeg(source, intermediate)
            source_path = intermediate
        try:
            result = await dispatcher.thumbnail("image" if kind == "heic" else kind, source_path, target)
        finally:
            if source_path != source:
                source_path.unlink(missing_ok=True)
        return result.strategy

    strategy = asyncio.run(_render())
    console.print(f"[green]Thumbnail written to {target}[/] via {strategy}")


def _cmd_heic(args: argparse.Namespace) -> None:
    source = _source_path(args.file)
    target = Path(args.out).expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    dispatcher = ConversionDispatcher(get_settings())
    result = asyncio.run(dispatcher.heic_to_jpeg(source, target))
    console.print(f"[green]JPEG written to {target}[/] via {result.strategy}")


def _cmd_sheet(args: argparse.Namespace) -> None:
    source = _source_path(args.file)
    sheets = parse_workbook(source)
    console.print_json(data={"sheets": [{"name": sheet.name, "data": sheet.rows} for sheet in sheets]})


if __name__ == "__main__":  # pragma: no cover
    main()
