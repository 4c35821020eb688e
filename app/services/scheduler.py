import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import TypeVar

from app.core.errors import (
    APIError,
    ExtractionError,
    PermanentSourceError,
    PersistenceError,
    SourceError,
    SourceParseError,
    TransientSourceError,
)
from app.core.logging import bind_run_id
from app.models.ingest import IngestionConfig, IngestionRun, ItemOutcome, ProgressEvent
from app.models.movie import MovieRecord
from app.services.merger import merge_records
from app.services.movie_store import MovieStore
from app.services.sources import DetailSource, ListingCursor, ListingSource, RawPayload

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]
ProgressCallback = Callable[[ProgressEvent], None]


class ItemStage(IntEnum):
    PENDING = 0
    FETCHING = 1
    EXTRACTING = 2
    ENRICHING = 3
    PERSISTING = 4


@dataclass(frozen=True)
class Pipeline:
    """One composition of listing source, detail source and their extractors."""

    name: str
    listing: ListingSource
    extract_listing: Callable[[RawPayload], MovieRecord]
    cursors: list[ListingCursor]
    max_pages_per_cursor: int | None = None
    detail: DetailSource | None = None
    extract_detail: Callable[[RawPayload], MovieRecord] | None = None
    # None means "whatever the listing turns up"
    requested: int | None = None


@dataclass
class _Item:
    base: MovieRecord
    stage: ItemStage = ItemStage.PENDING

    def advance(self, stage: ItemStage) -> None:
        if stage < self.stage:
            raise RuntimeError(f"item {self.base.label} cannot move from {self.stage.name} back to {stage.name}")
        self.stage = stage


@dataclass
class _RunState:
    config: IngestionConfig
    cancel: asyncio.Event
    on_progress: ProgressCallback | None = None
    run_id: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    found: int = 0
    saved: int = 0
    skipped: int = 0
    errored: int = 0
    pages_fetched: int = 0
    pages_failed: int = 0
    seen_keys: set[str] = field(default_factory=set)
    staged_keys: set[str] = field(default_factory=set)
    pending: list[MovieRecord] = field(default_factory=list)
    flush_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def progress(self, finished: bool = False, run: IngestionRun | None = None) -> ProgressEvent:
        return ProgressEvent(
            processed_count=self.saved + self.skipped + self.errored,
            total_count=self.found,
            saved_count=self.saved,
            errored_count=self.errored,
            skipped_count=self.skipped,
            finished=finished,
            run=run,
        )

    def emit(self, finished: bool = False, run: IngestionRun | None = None) -> None:
        if self.on_progress is not None:
            self.on_progress(self.progress(finished=finished, run=run))

    def record(self, outcome: ItemOutcome) -> None:
        if outcome is ItemOutcome.SAVED:
            self.saved += 1
        elif outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errored += 1
        self.emit()

    def summary(self, requested: int | None) -> IngestionRun:
        return IngestionRun(
            run_id=self.run_id,
            requested=requested if requested is not None else self.found,
            found=self.found,
            saved=self.saved,
            skipped=self.skipped,
            errored=self.errored,
            started_at=self.started_at,
            finished_at=datetime.now(timezone.utc),
            cancelled=self.cancel.is_set(),
            pages_fetched=self.pages_fetched,
            pages_failed=self.pages_failed,
        )


class IngestionScheduler:
    """Drives a Pipeline over a bounded worker pool.

    A single producer walks listing pages and feeds extracted base records to
    `worker_count` workers. Each worker takes one item through detail fetch,
    extraction and merge before dequeuing the next. Finished records are
    staged into batches that are upserted one batch at a time.
    """

    def __init__(self, store: MovieStore, sleep: Sleep = asyncio.sleep):
        self.store = store
        self._sleep = sleep

    def check_ready(self, config: IngestionConfig) -> None:
        if config.worker_count < 1 or config.batch_size < 1:
            raise APIError("invalid_config", "worker_count and batch_size must be positive", status_code=422)
        try:
            self.store.ping()
        except PersistenceError as exc:
            raise APIError(
                "store_unavailable",
                "Movie store is unreachable",
                status_code=503,
                details={"error": str(exc)},
            ) from exc

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    @staticmethod
    def _backoff_seconds(config: IngestionConfig, attempt: int, exc: TransientSourceError) -> float:
        delay_ms = min(config.retry_base_delay_ms * 2 ** (attempt - 1), config.retry_max_delay_ms)
        if exc.rate_limited:
            delay_ms = delay_ms * config.rate_limit_cooldown_multiplier
            if exc.retry_after is not None:
                delay_ms = max(delay_ms, exc.retry_after * 1000)
        return delay_ms / 1000

    async def _fetch(
        self,
        state: _RunState,
        call: Callable[[], Awaitable[T]],
        pace_seconds: float,
        what: str,
    ) -> T:
        """One source call with retries. Every attempt is followed by the pacing delay."""
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await call()
            except TransientSourceError as exc:
                if attempt > state.config.max_retries or state.cancel.is_set():
                    logger.warning(
                        "Giving up after transient source failures",
                        extra={"what": what, "attempts": attempt, "source": exc.source, "error": exc.message},
                    )
                    await self._pause(pace_seconds)
                    raise
                delay = self._backoff_seconds(state.config, attempt, exc)
                logger.info(
                    "Transient source failure, retrying",
                    extra={
                        "what": what,
                        "attempt": attempt,
                        "max_retries": state.config.max_retries,
                        "source": exc.source,
                        "status_code": exc.status_code,
                        "rate_limited": exc.rate_limited,
                        "backoff_seconds": delay,
                    },
                )
                await self._pause(max(delay, pace_seconds))
                continue
            except SourceError:
                await self._pause(pace_seconds)
                raise
            await self._pause(pace_seconds)
            return result

    def _take_listing_item(self, state: _RunState, pipeline: Pipeline, raw: RawPayload) -> MovieRecord | None:
        state.found += 1
        try:
            base = pipeline.extract_listing(raw)
        except ExtractionError as exc:
            logger.info("Listing item dropped", extra={"source": raw.source, "reason": exc.reason})
            state.record(ItemOutcome.SKIPPED if exc.missing_identity else ItemOutcome.ERRORED)
            return None
        except Exception:
            logger.exception("Unexpected listing extraction failure", extra={"source": raw.source})
            state.record(ItemOutcome.ERRORED)
            return None

        key = base.identity_key
        if key in state.seen_keys:
            logger.debug("Duplicate listing item skipped", extra={"identity_key": key})
            state.record(ItemOutcome.SKIPPED)
            return None
        state.seen_keys.add(key)
        return base

    async def _produce(self, state: _RunState, pipeline: Pipeline, queue: asyncio.Queue) -> None:
        config = state.config
        listing = pipeline.listing
        listing_pace = config.listing_delay_ms / 1000 if listing.remote else 0

        for index, start in enumerate(pipeline.cursors):
            if state.cancel.is_set():
                break
            if index and listing.remote:
                await self._pause(config.year_delay_ms / 1000)

            cursor: ListingCursor | None = start
            pages = 0
            while cursor is not None and not state.cancel.is_set():
                if pipeline.max_pages_per_cursor is not None and pages >= pipeline.max_pages_per_cursor:
                    break
                current = cursor
                what = f"{listing.name} listing year={current.year} page={current.page}"
                try:
                    page = await self._fetch(state, lambda: listing.fetch_listing(current), listing_pace, what)
                except SourceError as exc:
                    state.pages_failed += 1
                    logger.warning(
                        "Listing page failed, moving on",
                        extra={"what": what, "error_type": exc.__class__.__name__, "error": exc.message},
                    )
                    break
                except Exception:
                    state.pages_failed += 1
                    logger.exception("Unexpected listing page failure, moving on", extra={"what": what})
                    break

                pages += 1
                state.pages_fetched += 1
                for raw in page.items:
                    base = self._take_listing_item(state, pipeline, raw)
                    if base is not None:
                        await queue.put(base)
                logger.info(
                    "Listing page queued",
                    extra={"what": what, "items": len(page.items), "found_so_far": state.found},
                )
                cursor = page.next_cursor

    async def _process(self, state: _RunState, pipeline: Pipeline, item: _Item) -> ItemOutcome | None:
        record = item.base
        detail_source = pipeline.detail
        if detail_source is not None and pipeline.extract_detail is not None:
            key = detail_source.detail_key(item.base)
            if key is not None:
                item.advance(ItemStage.FETCHING)
                raw = await self._fetch(
                    state,
                    lambda: detail_source.fetch_detail(key),
                    state.config.min_delay_ms / 1000,
                    f"{detail_source.name} detail {key}",
                )

                item.advance(ItemStage.EXTRACTING)
                detail = pipeline.extract_detail(raw)

                item.advance(ItemStage.ENRICHING)
                record = merge_records(item.base, detail)

        if not record.title:
            raise ExtractionError(ExtractionError.MISSING_TITLE, f"no title found for {record.identity_key}")

        item.advance(ItemStage.PERSISTING)
        return await self._stage(state, record)

    async def _stage(self, state: _RunState, record: MovieRecord) -> ItemOutcome | None:
        key = record.identity_key
        if key in state.staged_keys:
            # two listing entries resolved to the same movie after enrichment
            logger.debug("Duplicate enriched record skipped", extra={"identity_key": key})
            return ItemOutcome.SKIPPED
        state.staged_keys.add(key)
        state.pending.append(record)
        if len(state.pending) >= state.config.batch_size:
            batch, state.pending = state.pending, []
            await self._flush(state, batch)
        return None

    async def _flush(self, state: _RunState, batch: list[MovieRecord]) -> None:
        if not batch:
            return
        async with state.flush_lock:
            saved = errored = 0
            for record in batch:
                try:
                    self.store.upsert(record.identity_key, record)
                except PersistenceError as exc:
                    errored += 1
                    logger.warning("Upsert failed", extra={"identity_key": record.identity_key, "error": str(exc)})
                    state.record(ItemOutcome.ERRORED)
                else:
                    saved += 1
                    state.record(ItemOutcome.SAVED)
            logger.info(
                "Persistence batch completed",
                extra={"batch_size": len(batch), "saved": saved, "errored": errored, "saved_so_far": state.saved},
            )

    async def _work(self, state: _RunState, pipeline: Pipeline, queue: asyncio.Queue, worker_no: int) -> None:
        while not state.cancel.is_set():
            base = await queue.get()
            if base is None or state.cancel.is_set():
                return

            item = _Item(base=base)
            try:
                outcome = await self._process(state, pipeline, item)
            except ExtractionError as exc:
                outcome = ItemOutcome.SKIPPED if exc.missing_identity else ItemOutcome.ERRORED
                logger.info("Extraction failed", extra={"item": base.label, "reason": exc.reason})
            except (PermanentSourceError, SourceParseError, TransientSourceError) as exc:
                outcome = ItemOutcome.ERRORED
                logger.warning(
                    "Detail fetch failed",
                    extra={
                        "item": base.label,
                        "stage": item.stage.name,
                        "worker": worker_no,
                        "error_type": exc.__class__.__name__,
                        "status_code": exc.status_code,
                        "error": exc.message,
                    },
                )
            except Exception:
                outcome = ItemOutcome.ERRORED
                logger.exception("Unexpected item failure", extra={"item": base.label, "stage": item.stage.name})

            if outcome is not None:
                state.record(outcome)

    async def run(
        self,
        pipeline: Pipeline,
        config: IngestionConfig,
        cancel: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> IngestionRun:
        self.check_ready(config)
        state = _RunState(
            config=config, cancel=cancel or asyncio.Event(), on_progress=on_progress, run_id=uuid.uuid4().hex[:12]
        )
        with bind_run_id(state.run_id):
            return await self._drive(state, pipeline)

    async def _drive(self, state: _RunState, pipeline: Pipeline) -> IngestionRun:
        config = state.config
        logger.info(
            "Ingestion run started",
            extra={
                "pipeline": pipeline.name,
                "cursors": len(pipeline.cursors),
                "max_pages_per_cursor": pipeline.max_pages_per_cursor,
                "worker_count": config.worker_count,
                "batch_size": config.batch_size,
                "max_retries": config.max_retries,
                "min_delay_ms": config.min_delay_ms,
            },
        )

        queue: asyncio.Queue[MovieRecord | None] = asyncio.Queue()
        workers = [
            asyncio.create_task(self._work(state, pipeline, queue, worker_no))
            for worker_no in range(config.worker_count)
        ]
        try:
            await self._produce(state, pipeline, queue)
            for _ in workers:
                queue.put_nowait(None)
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        # staged records are written even when the run was cancelled
        batch, state.pending = state.pending, []
        await self._flush(state, batch)

        summary = state.summary(pipeline.requested)
        state.emit(finished=True, run=summary)
        logger.info(
            "Ingestion run completed",
            extra={
                "pipeline": pipeline.name,
                "requested": summary.requested,
                "found": summary.found,
                "saved": summary.saved,
                "skipped": summary.skipped,
                "errored": summary.errored,
                "cancelled": summary.cancelled,
                "pages_fetched": summary.pages_fetched,
                "pages_failed": summary.pages_failed,
                "duration_ms": summary.duration_ms,
            },
        )
        return summary

    async def stream(
        self,
        pipeline: Pipeline,
        config: IngestionConfig,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Starts a fresh run and yields its progress events until it ends.

        The last event has `finished` set and carries the run summary.
        """
        cancel = cancel or asyncio.Event()
        events: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        task = asyncio.create_task(self.run(pipeline, config, cancel=cancel, on_progress=events.put_nowait))
        task.add_done_callback(lambda _: events.put_nowait(None))
        try:
            while True:
                event = await events.get()
                if event is None:
                    break
                yield event
            await task
        finally:
            if not task.done():
                cancel.set()
                await task
