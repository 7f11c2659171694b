from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import Optional

import click

from .config import Settings, load_settings
from .engine import SearchEngine, create_engine
from .exceptions import PkgSearchError, StorageError
from .index.analysis import ID_ANALYZER, ID_KEYWORD_ANALYZER, analyze
from .index.pipeline import IndexingPipeline
from .index.scheduler import RebuildScheduler
from .logging_config import configure_logging
from .query.models import SearchRequest, SortMode
from .query.service import PackageSearchService
from .sources import NugetDumpReader
from .storage.ledger import GenerationLedger

logger = logging.getLogger(__name__)


def _fail(message: str) -> None:
    click.echo(f"error: {message}", err=True)
    sys.exit(1)


def _open_ledger(settings: Settings) -> Optional[GenerationLedger]:
    if not settings.database.url:
        return None
    try:
        return GenerationLedger.from_url(settings.database.url, echo=settings.database.echo)
    except StorageError as exc:
        logger.warning("Generation ledger unavailable: %s", exc)
        return None


def _pipeline(settings: Settings, engine: SearchEngine, limit: Optional[int] = None) -> IndexingPipeline:
    cfg = settings.indexing
    if limit is not None:
        cfg = cfg.model_copy(update={"max_documents": limit})
    return IndexingPipeline(engine, cfg, ledger=_open_ledger(settings))


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """pkgsearch - package metadata search with zero-downtime reindexing"""
    settings = load_settings()
    configure_logging(settings.app.log_level, settings.app.log_json)
    ctx.obj = settings


@cli.command("index")
@click.argument("source_dir", required=False)
@click.option("--limit", type=int, default=None, help="Index at most this many packages")
@click.pass_obj
def index_cmd(settings: Settings, source_dir: Optional[str], limit: Optional[int]) -> None:
    """Build a new generation from the dump in SOURCE_DIR and promote it."""
    source_dir = source_dir or settings.indexing.package_path
    pipeline = _pipeline(settings, create_engine(settings.engine), limit)
    try:
        result = asyncio.run(pipeline.run(NugetDumpReader(source_dir)))
    except PkgSearchError as exc:
        _fail(str(exc))
        return
    click.echo(
        f"{result.generation}: {result.document_count} documents in {result.load.batches} batches, "
        f"now serving as {settings.indexing.live_alias}"
    )
    if result.promotion.deleted:
        click.echo(f"deleted: {', '.join(result.promotion.deleted)}")


@cli.command("promote")
@click.argument("generation")
@click.pass_obj
def promote_cmd(settings: Settings, generation: str) -> None:
    """Point the live alias at an existing GENERATION (retry or rollback)."""
    pipeline = _pipeline(settings, create_engine(settings.engine))
    try:
        result = asyncio.run(pipeline.promote(generation))
    except PkgSearchError as exc:
        _fail(str(exc))
        return
    click.echo(f"{settings.indexing.live_alias} -> {result.generation}")
    if result.demoted:
        click.echo(f"demoted: {', '.join(result.demoted)}")


@cli.command("search")
@click.argument("query", required=False, default="")
@click.option("--page", type=int, default=1, help="1-indexed result page")
@click.option("--page-size", type=int, default=None, help="Hits per page")
@click.option(
    "--sort",
    type=click.Choice([m.value for m in SortMode]),
    default=SortMode.RELEVANCE.value,
    help="Result ordering",
)
@click.option("--author", default=None, help="Only packages by this exact author")
@click.pass_obj
def search_cmd(
    settings: Settings,
    query: str,
    page: int,
    page_size: Optional[int],
    sort: str,
    author: Optional[str],
) -> None:
    """Search the live alias and print the results as JSON."""
    service = PackageSearchService(
        create_engine(settings.engine),
        alias=settings.indexing.live_alias,
        max_page_size=settings.search.max_page_size,
    )
    try:
        request = SearchRequest(
            query=query,
            page=page,
            page_size=page_size or settings.search.default_page_size,
            sort=SortMode(sort),
            author=author,
        )
        results = asyncio.run(service.search(request))
    except (ValueError, PkgSearchError) as exc:
        _fail(str(exc))
        return
    click.echo(json.dumps(results.to_dict(), indent=2, ensure_ascii=False))


@cli.command("generations")
@click.pass_obj
def generations_cmd(settings: Settings) -> None:
    """List index generations from the ledger, or the aliases without one."""
    ledger = _open_ledger(settings)
    if ledger is not None:
        try:
            records = ledger.list_generations()
        except StorageError as exc:
            _fail(str(exc))
            return
        for r in records:
            count = "-" if r.document_count is None else str(r.document_count)
            click.echo(f"{r.name}\t{r.status}\t{count}")
        return

    engine = create_engine(settings.engine)
    cfg = settings.indexing

    async def _aliases() -> tuple[list[str], list[str]]:
        return await engine.get_alias(cfg.live_alias), await engine.get_alias(cfg.previous_alias)

    try:
        live, previous = asyncio.run(_aliases())
    except PkgSearchError as exc:
        _fail(str(exc))
        return
    for name in live:
        click.echo(f"{name}\tlive")
    for name in sorted(previous, reverse=True):
        click.echo(f"{name}\tprevious")


@cli.command("analyze")
@click.argument("text")
@click.option(
    "--analyzer",
    type=click.Choice([ID_ANALYZER, ID_KEYWORD_ANALYZER]),
    default=ID_ANALYZER,
    help="Analysis chain to run",
)
def analyze_cmd(text: str, analyzer: str) -> None:
    """Print the tokens a package id is indexed as."""
    for token in analyze(text, analyzer):
        click.echo(token)


@cli.command("schedule")
@click.argument("source_dir", required=False)
@click.option("--now/--no-now", "run_now", default=True, help="Also rebuild once on startup")
@click.pass_obj
def schedule_cmd(settings: Settings, source_dir: Optional[str], run_now: bool) -> None:
    """Rebuild from SOURCE_DIR periodically until interrupted."""
    source_dir = source_dir or settings.indexing.package_path
    pipeline = _pipeline(settings, create_engine(settings.engine))

    async def _rebuild() -> None:
        result = await pipeline.run(NugetDumpReader(source_dir))
        logger.info("Scheduled rebuild promoted %s", result.generation)

    async def _serve() -> None:
        scheduler = RebuildScheduler()
        scheduler.schedule_rebuild(
            _rebuild,
            interval=timedelta(hours=settings.indexing.rebuild_interval_hours),
            run_immediately=run_now,
        )
        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown(wait=False)

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("stopped", err=True)


def main() -> None:
    cli(prog_name="pkgsearch")


if __name__ == "__main__":
    main()
