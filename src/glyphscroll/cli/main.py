"""
Main CLI entry point for glyph-scroll.
"""

import asyncio
import dataclasses
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from glyphscroll.core import Config
from glyphscroll.core.contracts import ProgressSnapshot, PublishCheckpoint, PublishStatus
from glyphscroll.core.envelope import KIND_ROOT, decode_envelope
from glyphscroll.core.errors import GlyphScrollError
from glyphscroll.ingestion import parse_manuscript
from glyphscroll.ledger import DirectoryLedger, LocalSigner
from glyphscroll.publishing import ManifestBuilder, ScrollPublisher, estimate_publication
from glyphscroll.publishing.progress import suggest_display
from glyphscroll.retrieval import ScrollRetriever
from glyphscroll.storage import DirectoryStoryCache, ManifestManager

GRID_WIDTH = 10
BAR_WIDTH = 30


def render_grid(current: int, total: int) -> str:
    """One cell per glyph, confirmed cells filled, GRID_WIDTH per row."""
    cells = ["#" if i < current else "." for i in range(total)]
    rows = ["".join(cells[i:i + GRID_WIDTH]) for i in range(0, total, GRID_WIDTH)]
    return "\n".join(rows)


def render_bar(current: int, total: int) -> str:
    fraction = current / total if total else 0.0
    filled = int(round(fraction * BAR_WIDTH))
    return f"[{'#' * filled}{'-' * (BAR_WIDTH - filled)}] {fraction * 100:.1f}% ({current}/{total})"


def render_progress(snapshot: ProgressSnapshot) -> str:
    if suggest_display(snapshot.total) == "grid":
        return render_grid(snapshot.current, snapshot.total)
    return render_bar(snapshot.current, snapshot.total)


class ProgressPrinter:
    """Echo stage changes, and the glyph grid or bar when a stage ends."""

    def __init__(self, quiet: bool = False):
        self.quiet = quiet
        self.stage: Optional[str] = None
        self.last: Optional[ProgressSnapshot] = None

    def __call__(self, snapshot: ProgressSnapshot):
        if self.quiet:
            return
        if snapshot.stage != self.stage:
            self._close_stage()
            self.stage = snapshot.stage
            click.echo(f"{snapshot.stage}...")
        self.last = snapshot

    def _close_stage(self):
        if self.last is not None and self.last.total > 0:
            click.echo(render_progress(self.last))

    def finish(self):
        if not self.quiet:
            self._close_stage()
        self.last = None


def load_config(config_path: Optional[str], **overrides) -> Config:
    config = Config.from_file(Path(config_path)) if config_path else Config()
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        config = dataclasses.replace(config, **overrides)
        config.validate()
    return config


def _checkpoint_path(ledger_dir: Path, story_id: str) -> Path:
    return ledger_dir / f"{story_id}.checkpoint.json"


def save_checkpoint(path: Path, checkpoint: PublishCheckpoint):
    data = {
        "story_id": checkpoint.story_id,
        "hash_list_refs": {str(k): v for k, v in checkpoint.hash_list_refs.items()},
        "content_refs": {str(k): v for k, v in checkpoint.content_refs.items()},
        "index_refs": {str(k): v for k, v in checkpoint.index_refs.items()},
        "manifest_ref": checkpoint.manifest_ref,
        "manifest_root_hash": checkpoint.manifest_root_hash,
        "total_chunks": checkpoint.total_chunks,
    }
    temp_path = path.with_suffix(".tmp")
    with open(temp_path, "w") as f:
        json.dump(data, f, indent=2)
    temp_path.replace(path)


def load_checkpoint(path: Path) -> Optional[PublishCheckpoint]:
    if not path.exists():
        return None
    with open(path, "r") as f:
        data = json.load(f)
    return PublishCheckpoint(
        story_id=data["story_id"],
        hash_list_refs={int(k): v for k, v in data["hash_list_refs"].items()},
        content_refs={int(k): v for k, v in data["content_refs"].items()},
        index_refs={int(k): v for k, v in data.get("index_refs", {}).items()},
        manifest_ref=data.get("manifest_ref"),
        manifest_root_hash=data.get("manifest_root_hash"),
        total_chunks=data.get("total_chunks"),
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress details to stderr")
def cli(verbose):
    """glyph-scroll - publish and read long-form text on a ledger."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("manuscript", type=click.Path(exists=True, dir_okay=False))
@click.option("--ledger", "ledger_dir", required=True, type=click.Path(file_okay=False))
@click.option("--key", "public_key", required=True, help="Author public key")
@click.option("--author", default="", help="Author display name")
@click.option("--title", default=None, help="Title (defaults to the manuscript's)")
@click.option("--timestamp", default=None, help="ISO 8601 creation time; reuse it to resume")
@click.option("--config", "config_path", type=click.Path(exists=True), help="JSON config file")
@click.option("--compression", type=click.Choice(["deflate", "zstd", "none"]), default=None)
@click.option("--cache", "cache_dir", type=click.Path(file_okay=False), default=None)
@click.option("--quiet", "-q", is_flag=True, help="No progress output")
def publish(manuscript, ledger_dir, public_key, author, title, timestamp, config_path,
            compression, cache_dir, quiet):
    """Publish a manuscript to a directory ledger."""
    try:
        config = load_config(config_path, compression=compression)
        doc = parse_manuscript(Path(manuscript))
        created = datetime.fromisoformat(timestamp) if timestamp else None
        package = ManifestBuilder(config).build(
            doc.text, title or doc.title, author, public_key, timestamp=created
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    summary = package.summary
    click.echo(f"Story: {package.story_id}")
    click.echo(
        f"Compressed {summary.compression.original_size} -> "
        f"{summary.compression.compressed_size} bytes ({summary.compression.percent_saved}% saved)"
    )
    click.echo(
        f"{summary.total_chunks} glyphs, {summary.total_hash_list_chunks} hash list chunks, "
        f"~{summary.estimated_transactions} transactions"
    )

    ledger_path = Path(ledger_dir)
    ledger = DirectoryLedger(ledger_path, max_payload_size=config.max_payload_size)
    checkpoint_path = _checkpoint_path(ledger_path, package.story_id)
    printer = ProgressPrinter(quiet=quiet)

    async def run():
        cache = DirectoryStoryCache(Path(cache_dir)).open() if cache_dir else None
        try:
            publisher = ScrollPublisher(ledger, config=config, cache=cache)
            checkpoint = load_checkpoint(checkpoint_path)
            if checkpoint is not None:
                publisher.restore_checkpoint(checkpoint, package.manifest_root)
                click.echo(f"Resuming: {checkpoint.confirmed_glyphs} glyphs already confirmed")
            return await publisher.publish(package, LocalSigner(public_key), on_progress=printer)
        finally:
            if cache is not None:
                cache.close()

    try:
        result = asyncio.run(run())
    except GlyphScrollError as e:
        raise click.ClickException(str(e))
    finally:
        printer.finish()

    save_checkpoint(checkpoint_path, result.checkpoint)
    if result.status == PublishStatus.COMPLETED:
        click.echo(f"Published {result.story_id}")
        click.echo(f"Manifest ref: {result.manifest_ref}")
        return
    raise click.ClickException(
        f"Publish {result.status.value}: {result.successful_glyphs}/{result.total_glyphs} "
        f"glyphs confirmed ({result.reason}). Re-run with --timestamp "
        f"{package.manifest_root.timestamp.isoformat()} to resume."
    )


@cli.command()
@click.argument("story_id")
@click.argument("manifest_ref")
@click.option("--ledger", "ledger_dir", required=True, type=click.Path(exists=True, file_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True), help="JSON config file")
@click.option("--cache", "cache_dir", type=click.Path(file_okay=False), default=None)
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None)
@click.option("--quiet", "-q", is_flag=True, help="No progress output")
def read(story_id, manifest_ref, ledger_dir, config_path, cache_dir, output, quiet):
    """Read and verify a story."""
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e))
    ledger = DirectoryLedger(Path(ledger_dir), max_payload_size=config.max_payload_size)
    printer = ProgressPrinter(quiet=quiet or output is None)

    async def run():
        cache = DirectoryStoryCache(Path(cache_dir)).open() if cache_dir else None
        try:
            retriever = ScrollRetriever(ledger, cache=cache, config=config)
            return await retriever.retrieve(story_id, manifest_ref, on_progress=printer)
        finally:
            if cache is not None:
                cache.close()

    try:
        result = asyncio.run(run())
    except (GlyphScrollError, ValueError) as e:
        raise click.ClickException(str(e))
    finally:
        printer.finish()

    if output:
        Path(output).write_text(result.text, encoding="utf-8")
    else:
        click.echo(result.text)

    if not result.is_complete:
        gaps = ", ".join(str(gap.index) for gap in result.gaps)
        detail = f" (unverified chunks: {gaps})" if gaps else ""
        raise click.ClickException(f"Retrieval ended in {result.stage.value}: {result.error}{detail}")
    if result.from_cache:
        click.echo("(from cache)", err=True)


@cli.command()
@click.argument("manifest_ref")
@click.option("--ledger", "ledger_dir", required=True, type=click.Path(exists=True, file_okay=False))
def inspect(manifest_ref, ledger_dir):
    """Print a manifest root as JSON."""
    ledger = DirectoryLedger(Path(ledger_dir))
    try:
        raw = asyncio.run(ledger.read(manifest_ref))
        envelope = decode_envelope(raw)
        if envelope.kind != KIND_ROOT:
            raise click.ClickException(f"{manifest_ref} is a {envelope.kind} transaction, not a root")
        decoded = ManifestManager.decode_root(envelope.data)
    except (GlyphScrollError, ValueError) as e:
        raise click.ClickException(str(e))

    output = ManifestManager.root_to_dict(decoded.root)
    if decoded.spilled:
        output["refIndex"] = decoded.ref_index
        output["refIndexDigest"] = decoded.ref_index_digest
    else:
        output["hashListChunks"] = decoded.hash_list_refs
        output["chunks"] = decoded.chunk_refs
    click.echo(json.dumps(output, indent=2))


@cli.command()
@click.argument("manuscript", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True), help="JSON config file")
@click.option("--compression", type=click.Choice(["deflate", "zstd", "none"]), default=None)
@click.option("--chunk-size", type=int, default=None, help="Bytes per glyph")
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
def estimate(manuscript, config_path, compression, chunk_size, output_format):
    """Estimate publication cost without a ledger."""
    try:
        config = load_config(config_path, compression=compression, chunk_size=chunk_size)
        doc = parse_manuscript(Path(manuscript))
        summary = estimate_publication(doc.text, config)
    except ValueError as e:
        raise click.ClickException(str(e))

    if output_format == "json":
        click.echo(json.dumps(dataclasses.asdict(summary), indent=2))
        return

    stats = summary.compression
    click.echo(f"Original size: {stats.original_size} bytes")
    click.echo(f"Compressed size: {stats.compressed_size} bytes ({stats.percent_saved}% saved)")
    click.echo(f"Chunk size: {summary.chunk_size} bytes")
    click.echo(f"Glyphs: {summary.total_chunks}")
    click.echo(f"Hash list chunks: {summary.total_hash_list_chunks}")
    click.echo(f"Transactions: ~{summary.estimated_transactions}")
    click.echo(f"Ledger bytes: ~{summary.estimated_ledger_bytes}")
    click.echo(f"Progress display: {summary.display}")


@cli.command("cache-stats")
@click.option("--cache", "cache_dir", required=True, type=click.Path(file_okay=False))
def cache_stats(cache_dir):
    """Show cache usage."""
    with DirectoryStoryCache(Path(cache_dir)) as cache:
        stats = cache.stats()
    click.echo(f"Stories: {stats.total_stories}/{stats.max_stories}")
    click.echo(f"Size: {stats.total_size_bytes}/{stats.max_size_bytes} bytes")
    click.echo(f"Utilization: {stats.utilization_percent}%")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
