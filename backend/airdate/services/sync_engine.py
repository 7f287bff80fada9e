"""Sync engine: batched, rate-limited restore of a backup or sync payload.

Fetches calendar data from the catalog for every tracked item of the
payload, merges it into the EntityStore, and reports progress as an async
stream of SyncProgress events (one per batch).

SyncEngine.start drives a run as a background SyncJob, so the run does not
depend on anyone reading the stream.

Pipeline:
    BatchQueue (fixed-size partitions)
      -> FixedDelayLimiter (gates each dequeue after the first)
      -> concurrent unit fetches inside the batch
      -> batch-atomic merge into the store
      -> progress event
"""

import asyncio
import logging
import math
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence, Union

from airdate.clients.base import ICatalog, IStateStorage
from airdate.errors import (
    AirdateError, PersistenceError, SyncAbortedError, SyncInProgressError, UnitFetchError,
)
from airdate.models.domain import (
    Episode, LibraryItem, MediaKind, ReleaseType, SyncProgress, parse_date,
)
from airdate.models.schemas import BackupPayload
from airdate.services import backup_codec
from airdate.services.backup_codec import RawPayload, RestorePlan
from airdate.services.entity_store import EntityStore

logger = logging.getLogger(__name__)

Unit = tuple[LibraryItem, bool]     # (item, belongs_to_watchlist)


@dataclass
class SyncReport:
    """Outcome of the last run."""
    total: int = 0
    fetched: int = 0
    failures: list[UnitFetchError] = field(default_factory=list)
    completed: bool = False

    @property
    def skipped_count(self) -> int:
        return len(self.failures)

    @property
    def failed_keys(self) -> list[str]:
        return [f.key for f in self.failures]


class BatchQueue:
    """Fixed-size partition of the sync units, in order."""

    def __init__(self, units: Sequence[Unit], batch_size: int):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batches = [list(units[i:i + batch_size]) for i in range(0, len(units), batch_size)]

    def __len__(self) -> int:
        return len(self.batches)

    def __iter__(self):
        return iter(self.batches)


class FixedDelayLimiter:
    """Waits a fixed delay between batches to stay under the catalog's rate ceiling."""

    def __init__(self, delay: float, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.delay = delay
        self._sleep = sleep

    async def wait(self) -> None:
        if self.delay > 0:
            await self._sleep(self.delay)


# ── Background job ───────────────────────────────────────────────

class SyncJob:
    """A run driven by its own task, so it finishes whether or not anyone listens.

    Progress events are buffered. Every reader of `updates()` replays the
    buffer from the start and then follows the live run; a reader going
    away never stops the run.
    """

    def __init__(self, run: AsyncIterator[SyncProgress]):
        self.events: list[SyncProgress] = []
        self.error: Optional[BaseException] = None
        self._tick = asyncio.Event()
        self.task = asyncio.create_task(self._drive(run))
        self.task.add_done_callback(self._on_done)

    @property
    def finished(self) -> bool:
        return self.task.done()

    async def _drive(self, run: AsyncIterator[SyncProgress]) -> None:
        try:
            async for progress in run:
                self.events.append(progress)
                self._notify()
        except AirdateError as e:
            logger.warning(f"Sync run stopped: {e}")
            self.error = e
        except Exception as e:
            logger.exception("Sync run crashed")
            self.error = e

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled() and self.error is None:
            self.error = SyncAbortedError("Sync run was cancelled")
        self._notify()

    def _notify(self) -> None:
        self._tick.set()
        self._tick = asyncio.Event()

    async def updates(self) -> AsyncIterator[SyncProgress]:
        """Every progress event of the run, then the run's error (if any) raised."""
        seen = 0
        while True:
            tick = self._tick
            while seen < len(self.events):
                yield self.events[seen]
                seen += 1
            if self.finished:
                break
            await tick.wait()
        if self.error is not None:
            raise self.error

    async def wait(self) -> None:
        """Block until the run is over. Errors stay on `error`."""
        await asyncio.wait({self.task})


# ── Unit fetch ───────────────────────────────────────────────────

async def fetch_item_episodes(catalog: ICatalog, item: LibraryItem) -> list[Episode]:
    """All dated calendar entries for one library item.

    Movies become one entry per theatrical/digital release. Shows are
    fetched season by season; a failing season is logged and skipped, a
    failing show lookup fails the whole unit.
    """
    if item.media_type is MediaKind.MOVIE:
        return await _fetch_movie_entries(catalog, item)
    if item.media_type is MediaKind.TV:
        return await _fetch_show_entries(catalog, item)
    raise ValueError(f"Unhandled media type: {item.media_type!r}")


async def _fetch_movie_entries(catalog: ICatalog, item: LibraryItem) -> list[Episode]:
    entries = []
    for release in await catalog.fetch_movie_releases(item.id):
        if release.type not in (ReleaseType.THEATRICAL.value, ReleaseType.DIGITAL.value):
            continue
        release_type = ReleaseType(release.type)
        entries.append(Episode(
            show_id=item.id,
            id=item.id * 1000 + (1 if release_type is ReleaseType.THEATRICAL else 2),
            name=item.name,
            air_date=parse_date(release.date),
            overview=item.overview,
            still_path=item.backdrop_path,
            poster_path=item.poster_path,
            is_movie=True,
            release_type=release_type,
            show_name=item.name,
        ))
    return entries


async def _fetch_show_entries(catalog: ICatalog, item: LibraryItem) -> list[Episode]:
    details = await catalog.fetch_show_details(item.id)
    entries = []
    for season in details.seasons:
        try:
            episodes = await catalog.fetch_season(item.id, season.season_number)
        except Exception as e:
            logger.warning(f"Season {season.season_number} of {item.name} ({item.key}) failed: {e}")
            continue
        for ep in episodes:
            if ep.air_date is None:
                continue
            entries.append(Episode(
                show_id=item.id,
                id=ep.id,
                name=ep.name,
                air_date=ep.air_date,
                season_number=ep.season_number,
                episode_number=ep.episode_number,
                overview=ep.overview,
                still_path=ep.still_path,
                poster_path=item.poster_path or details.poster_path,
                show_name=item.name,
            ))
    return entries


# ── Engine ───────────────────────────────────────────────────────

class SyncEngine:
    """Restores payloads into an EntityStore against the rate-limited catalog."""

    BATCH_SIZE = 4
    BATCH_DELAY = 0.5  # seconds between batches

    def __init__(
        self,
        store: EntityStore,
        catalog: ICatalog,
        storage: Optional[IStateStorage] = None,
        storage_key: Optional[str] = None,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY,
        unit_timeout: Optional[float] = 20.0,
        failure_budget: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.catalog = catalog
        self.storage = storage
        self.storage_key = storage_key
        self.batch_size = batch_size
        self.limiter = FixedDelayLimiter(batch_delay, sleep)
        self.unit_timeout = unit_timeout
        self.failure_budget = failure_budget
        self.last_report: Optional[SyncReport] = None
        self.job: Optional[SyncJob] = None

    @property
    def is_running(self) -> bool:
        return self.store.sync_lock.locked() or (self.job is not None and not self.job.finished)

    @staticmethod
    def estimate(count: int, batch_size: int = BATCH_SIZE, delay: float = BATCH_DELAY) -> str:
        """Rough wall time of a run over `count` units, for an upfront notice."""
        batches = math.ceil(count / batch_size)
        total_seconds = batches * delay
        if total_seconds < 60:
            return f"{math.ceil(total_seconds)} seconds"
        return f"{math.ceil(total_seconds / 60)} minutes"

    # ── Entry points ─────────────────────────────────────────────

    def start(self, run: AsyncIterator[SyncProgress]) -> SyncJob:
        """Drive `run` as a background job and return it.

        Claims the engine before returning, so a second start while the job
        is live raises SyncInProgressError.
        """
        if self.is_running:
            raise SyncInProgressError("A sync run is already in progress for this library")
        self.job = SyncJob(run)
        return self.job

    async def close(self) -> None:
        """Cancel a live job (application shutdown)."""
        if self.job is not None and not self.job.finished:
            self.job.task.cancel()
            with suppress(asyncio.CancelledError):
                await self.job.task

    def import_backup(self, raw: RawPayload) -> AsyncIterator[SyncProgress]:
        """Validate a backup file now, then return the run's progress stream."""
        return self.run(backup_codec.plan(backup_codec.decode(raw)))

    def process_sync_payload(self, raw: str) -> AsyncIterator[SyncProgress]:
        """Validate a scanned sync string now, then return the run's progress stream."""
        return self.run(backup_codec.plan(backup_codec.decode_sync_payload(raw)))

    def merge_import(self, raw: RawPayload) -> AsyncIterator[SyncProgress]:
        """Add only the items and lists the library does not have yet.

        Interactions, reminders and settings of the file are left alone.
        """
        payload = backup_codec.decode(raw)
        preview = backup_codec.preview_merge(payload, self.store)
        subset = RestorePlan(
            user=self.store.user or backup_codec.plan(payload).user,
            watchlist=preview.new_items,
            lists=preview.new_lists,
        )
        return self.run(subset)

    async def run(self, payload: Union[BackupPayload, RestorePlan, RawPayload]) -> AsyncIterator[SyncProgress]:
        """Apply a full payload, yielding progress after every batch.

        The payload is validated before anything is mutated. Unit failures
        are logged and counted; the final event always has current == total.
        """
        restore_plan = self._to_plan(payload)

        async with self._exclusive():
            units = restore_plan.units()
            if restore_plan.user:
                self.store.user = restore_plan.user
            async for progress in self._process(units):
                yield progress

            for lst in restore_plan.lists:
                self.store.subscribe_list(lst)
            self.store.merge_state(
                restore_plan.interactions,
                restore_plan.reminders,
                restore_plan.settings_patch,
            )
            self.store.rebuild_index()
            self._finish()

        await self.persist()

    async def full_resync(self) -> AsyncIterator[SyncProgress]:
        """Refetch calendar data for everything currently tracked."""
        async with self._exclusive():
            units = [(item, self.store.in_watchlist(item.key)) for item in self.store.tracked_items()]
            async for progress in self._process(units):
                yield progress
            self.store.rebuild_index()
            self._finish()

        await self.persist()

    async def refresh_item(self, item: LibraryItem) -> bool:
        """Fetch one item's entries outside a run (after a single library add)."""
        result = await self._fetch_unit(item)
        if isinstance(result, UnitFetchError):
            return False
        self.store.set_episodes(item.key, result)
        self.store.rebuild_index()
        return True

    # ── Pipeline ─────────────────────────────────────────────────

    @staticmethod
    def _to_plan(payload) -> RestorePlan:
        if isinstance(payload, RestorePlan):
            return payload
        if not isinstance(payload, BackupPayload):
            payload = backup_codec.decode(payload)
        return backup_codec.plan(payload)

    @asynccontextmanager
    async def _exclusive(self):
        lock = self.store.sync_lock
        if lock.locked():
            raise SyncInProgressError("A sync run is already in progress for this library")
        async with lock:
            yield

    async def _process(self, units: list[Unit]) -> AsyncIterator[SyncProgress]:
        report = SyncReport(total=len(units))
        self.last_report = report
        queue = BatchQueue(units, self.batch_size)
        current = 0

        logger.info(
            f"Sync started: {len(units)} items in {len(queue)} batches "
            f"(~{self.estimate(len(units), self.batch_size, self.limiter.delay)})"
        )
        if not units:
            yield SyncProgress(current=0, total=0)
            return

        for position, batch in enumerate(queue):
            if position:
                await self.limiter.wait()

            results = await asyncio.gather(*(self._fetch_unit(item) for item, _ in batch))

            merged = []
            for (item, to_watchlist), result in zip(batch, results):
                if isinstance(result, UnitFetchError):
                    report.failures.append(result)
                    merged.append((item, to_watchlist, None))
                else:
                    report.fetched += 1
                    merged.append((item, to_watchlist, result))
            self.store.apply_batch(merged)

            current += len(batch)
            yield SyncProgress(current=current, total=report.total)

            if self.failure_budget is not None and report.skipped_count > self.failure_budget:
                raise SyncAbortedError(
                    f"{report.skipped_count} items failed, over the budget of {self.failure_budget}"
                )

    async def _fetch_unit(self, item: LibraryItem) -> Union[list[Episode], UnitFetchError]:
        try:
            if self.unit_timeout:
                return await asyncio.wait_for(
                    fetch_item_episodes(self.catalog, item), timeout=self.unit_timeout,
                )
            return await fetch_item_episodes(self.catalog, item)
        except asyncio.TimeoutError as e:
            error = UnitFetchError(str(item.key), e)
            logger.warning(f"Catalog fetch timed out for {item.name} ({item.key})")
        except Exception as e:
            error = UnitFetchError(str(item.key), e)
            logger.warning(f"Catalog fetch failed for {item.name} ({item.key}): {e}")
        return error

    def _finish(self) -> None:
        report = self.last_report
        report.completed = True
        if report.skipped_count:
            logger.warning(
                f"Sync finished: {report.fetched}/{report.total} fetched, "
                f"{report.skipped_count} skipped ({', '.join(report.failed_keys)})"
            )
        else:
            logger.info(f"Sync finished: {report.fetched}/{report.total} fetched")

    async def persist(self) -> None:
        """Save the encoded store. Raises PersistenceError; memory state is kept either way."""
        if self.storage is None:
            return
        key = self.storage_key or (self.store.user.id if self.store.user else None)
        if not key:
            logger.debug("No storage key for this profile; skipping persist")
            return
        try:
            await self.storage.persist(key, backup_codec.encode(self.store))
        except Exception as e:
            raise PersistenceError(f"Saving state for '{key}' failed: {e}") from e
