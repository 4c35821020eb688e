#!/usr/bin/env python3
import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from app.core.container import AppContainer
from app.core.errors import APIError, PersistenceError
from app.core.logging import configure_logging
from app.core.settings import get_settings
from app.models.ingest import IngestionConfig


def _read_ids(path: Path) -> list[str]:
    with path.open("r", encoding="utf-8") as f:
        return [line.split("#", 1)[0].strip() for line in f if line.split("#", 1)[0].strip()]


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _print_error(exc: APIError) -> None:
    _print_json({"error": {"code": exc.code, "message": exc.message, "details": exc.details}})


def _config(container: AppContainer, args: argparse.Namespace) -> IngestionConfig:
    return container.ingestion_service.config_for(
        years_back=getattr(args, "years", None),
        max_pages_per_year=getattr(args, "pages", None),
        worker_count=args.workers,
        batch_size=args.batch_size,
        min_delay_ms=args.min_delay_ms,
        max_retries=args.max_retries,
    )


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, stream=sys.stderr)
    try:
        container = AppContainer(settings)
    except PersistenceError as exc:
        _print_error(
            APIError("store_unavailable", "Movie store is unreachable", status_code=503, details={"error": str(exc)})
        )
        return 2
    service = container.ingestion_service

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except NotImplementedError:
        # no signal handlers on Windows event loops, Ctrl+C then aborts without a summary
        pass

    try:
        if args.command == "count":
            _print_json(service.count_report().model_dump())
            return 0

        if args.command == "title":
            run, movie = await service.ingest_title(args.imdb_id)
            _print_json({"run": run.model_dump(mode="json"), "movie": movie.model_dump(mode="json") if movie else None})
            return 0 if run.saved else 1

        config = _config(container, args)
        if args.command == "years" and args.progress:
            run = None
            async for event in service.stream_ingestion(config, cancel=cancel):
                print(
                    f"[progress] {event.processed_count}/{event.total_count} "
                    f"saved={event.saved_count} skipped={event.skipped_count} errored={event.errored_count}",
                    file=sys.stderr,
                )
                run = event.run or run
            _print_json(run.model_dump(mode="json") if run else None)
            return 0

        if args.command == "years":
            run = await service.run_ingestion(config, cancel=cancel)
        elif args.command == "recent":
            run = await service.run_recent(config, cancel=cancel)
        elif args.command == "search":
            run = await service.run_search(args.query, config, cancel=cancel)
        else:
            run = await service.run_ids(_read_ids(args.file), config, cancel=cancel)
        _print_json(run.model_dump(mode="json"))
        return 0
    except APIError as exc:
        _print_error(exc)
        return 2
    finally:
        await container.close()


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--workers", type=int, default=None, help="worker pool size")
    parser.add_argument("--batch-size", type=int, default=None, help="records per persistence batch")
    parser.add_argument("--min-delay-ms", type=int, default=None, help="pause after every detail fetch")
    parser.add_argument("--max-retries", type=int, default=None, help="retries after a transient failure")


def main() -> None:
    parser = argparse.ArgumentParser(description="Populate the movie database from TMDB and IMDb")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    years = sub.add_parser("years", help="discover movies released in the last N years")
    years.add_argument("--years", type=int, default=None)
    years.add_argument("--pages", type=int, default=None, help="listing pages per year")
    years.add_argument("--progress", action="store_true", help="print progress events while running")
    _add_run_options(years)

    recent = sub.add_parser("recent", help="movies in theaters and coming soon")
    _add_run_options(recent)

    search = sub.add_parser("search", help="TMDB search query")
    search.add_argument("query")
    search.add_argument("--pages", type=int, default=None)
    _add_run_options(search)

    ids = sub.add_parser("ids", help="IMDb ids listed one per line in a file")
    ids.add_argument("file", type=Path)
    _add_run_options(ids)

    title = sub.add_parser("title", help="a single IMDb title")
    title.add_argument("imdb_id")

    sub.add_parser("count", help="report what is stored")

    args = parser.parse_args()
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
