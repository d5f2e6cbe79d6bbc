from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .core.config import Settings, get_settings
from .core.db import create_all, create_engine, create_session_factory
from .core.errors import IngestError
from .core.logging import configure_logging
from .core.storage import get_storage
from .core.toolchain import check_toolchain
from .pipeline import IngestCoordinator, IngestRequest, MediaProber, VideoAsset
from .services.video_service import VideoService

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)

    if getattr(args, "check", False):
        _run_environment_check(settings)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args, settings)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HLS ingest developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")

    subparsers = parser.add_subparsers(dest="command")

    probe_parser = subparsers.add_parser("probe", help="Run ffprobe and print the parsed media metadata")
    probe_parser.add_argument("--file", required=True, help="Path to the source media file")
    probe_parser.set_defaults(func=_cmd_probe)

    ingest_parser = subparsers.add_parser("ingest", help="Package a file as HLS, upload it and record the video")
    ingest_parser.add_argument("--file", required=True, help="Path to the source media file")
    ingest_parser.add_argument("--thumbnail", required=True, help="Path to the thumbnail image")
    ingest_parser.add_argument("--title", required=True)
    ingest_parser.add_argument("--description", default="")
    ingest_parser.add_argument("--owner", required=True, help="Owner id recorded on the video")
    ingest_parser.add_argument("--tag", dest="tags", action="append", default=[], help="Tag to attach; repeatable")
    ingest_parser.add_argument(
        "--keep-source",
        action="store_true",
        help="Ingest copies of the inputs so the originals survive job cleanup.",
    )
    ingest_parser.set_defaults(func=_cmd_ingest)
    return parser


def _cmd_probe(args: argparse.Namespace, settings: Settings) -> None:
    media_path = Path(args.file).expanduser().resolve()
    prober = MediaProber(settings.ffprobe_binary, timeout_s=settings.probe_timeout_s)
    try:
        metadata = asyncio.run(prober.probe(media_path))
    except IngestError as exc:
        console.print(f"[red]{exc.kind}:[/] {exc.message}")
        sys.exit(3)
    console.print_json(data={**asdict(metadata), "duration_string": metadata.duration_string})


def _cmd_ingest(args: argparse.Namespace, settings: Settings) -> None:
    """Run the full pipeline against the configured storage and database.

    The pipeline deletes its inputs when the job ends, so ``--keep-source``
    stages copies first.
    """
    source = Path(args.file).expanduser().resolve()
    thumbnail = Path(args.thumbnail).expanduser().resolve()

    staging_dir: Optional[Path] = None
    if args.keep_source:
        settings.staging_root.mkdir(parents=True, exist_ok=True)
        staging_dir = Path(tempfile.mkdtemp(prefix="cli-", dir=settings.staging_root))
        source = Path(shutil.copy2(source, staging_dir / f"source{source.suffix}"))
        thumbnail = Path(shutil.copy2(thumbnail, staging_dir / f"thumbnail{thumbnail.suffix}"))

    request = IngestRequest(
        source_path=source,
        thumbnail_path=thumbnail,
        title=args.title,
        description=args.description,
        owner_id=args.owner,
        tags=tuple(args.tags),
    )
    try:
        asset = asyncio.run(_ingest(settings, request))
    except IngestError as exc:
        console.print(f"[red]{exc.kind}:[/] {exc.message}")
        if exc.detail:
            console.print_json(data=exc.detail)
        sys.exit(4)
    finally:
        if staging_dir is not None:
            shutil.rmtree(staging_dir, ignore_errors=True)

    _print_asset(asset)


async def _ingest(settings: Settings, request: IngestRequest) -> VideoAsset:
    engine = create_engine(settings)
    try:
        await create_all(engine)
        session_factory = create_session_factory(engine)
        async with session_factory() as session:
            coordinator = IngestCoordinator.from_settings(settings, get_storage(settings), VideoService(session))
            return await coordinator.run(request)
    finally:
        await engine.dispose()


def _print_asset(asset: VideoAsset) -> None:
    table = Table(title=f"Video {asset.asset_id}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("title", asset.title)
    table.add_row("duration", asset.duration_string)
    if asset.tags:
        table.add_row("tags", ", ".join(asset.tags))
    table.add_row("manifest", asset.manifest_url)
    table.add_row("thumbnail", asset.thumbnail_url)
    for variant in asset.quality_variants:
        table.add_row(f"variant {variant.resolution_label}", variant.manifest_url)
    console.print(table)


def _run_environment_check(settings: Settings) -> None:
    """Check for the presence of required external dependencies."""
    results = check_toolchain(settings)

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
