"""
championship/services/ranking_synchronizer.py
Ranking Synchronizer: Collector -> Aggregator -> Goal Tracker -> snapshot.

State machine (per championship):
    uninitialized --initialize--> initialized
    initialized --synchronize--> synchronizing --> initialized
    initialized / synchronizing --close--> closed (terminal)

PUBLICATION:
- A snapshot and all of its entries are inserted, and the championship's
  current_snapshot_version is moved to it, in ONE transaction. Readers
  see the previous snapshot until that commit.
- version = highest existing version + 1. Older snapshots are kept.

MUTUAL EXCLUSION:
- One synchronization per championship at a time, across processes.
- The lease is taken with a conditional UPDATE on the championship row
  and released in a finally block. A concurrent caller gets
  SyncInProgressError; nothing is queued.
- Leases expire after SYNC_LEASE_SECONDS so a crashed worker cannot
  block the championship forever.
- The pointer is only moved while the lease token still matches.

ABORT:
- Every run is bounded by a timeout (SYNC_TIMEOUT_SECONDS unless the
  caller passes one). On timeout or cancellation the transaction rolls
  back, the lease is released and the prior snapshot stays current.
"""
import asyncio
import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from championship.config.settings import feature_flags, settings
from championship.errors import (
    APIError, AlreadyInitializedError, ChampionshipClosedError, ErrorCode,
    InvalidStateError, NotFoundError, SyncAbortedError, SyncInProgressError,
)
from championship.orm.championship import Championship, ChampionshipStatus
from championship.orm.class_progress import ClassProgress, ClassTier
from championship.orm.ranking_snapshot import RankingSnapshot, UnitScoreEntry
from championship.orm.unit import Unit
from championship.security.capabilities import Caller
from championship.services.event_collector import CollectionScope, EventCollector
from championship.services.goal_tracker import DEFAULT_TARGETS, goals_for_units
from championship.services.score_aggregator import UnitRef, UnitScore, aggregate, zero_scores
from championship.services.score_catalog import ScoreCatalog, get_catalog

logger = logging.getLogger(__name__)

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_IDLE = "idle"


@dataclass
class SyncResult:
    championship_id: int
    version: int
    synced_at: datetime
    unit_count: int
    checksum_hash: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self):
        return {
            "championship_id": self.championship_id,
            "version": self.version,
            "synced_at": self.synced_at.isoformat(),
            "unit_count": self.unit_count,
            "checksum_hash": self.checksum_hash,
            "duration_ms": self.duration_ms,
        }


@dataclass
class SyncRun:
    """Bookkeeping for a background run started by launch()."""
    championship_id: int
    started_at: datetime
    status: str = RUN_RUNNING
    result: Optional[SyncResult] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    finished_at: Optional[datetime] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def to_dict(self):
        return {
            "championship_id": self.championship_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result.to_dict() if self.result else None,
            "error": {"code": self.error_code, "message": self.error_message} if self.error_code else None,
        }


# =============================================================================
# Checksum
# =============================================================================

def compute_checksum(rows: Sequence[dict]) -> str:
    """
    SHA256 over the ordered ranking.

    FORMAT (one line per unit, sorted by rank then unit_id):
        rank|unit_id|total|demerit_count|<breakdown as sorted JSON>
    """
    ordered = sorted(rows, key=lambda r: (r["rank"], r["unit_id"]))
    lines = [
        f"{r['rank']}|{r['unit_id']}|{r['total']}|{r['demerit_count']}|"
        f"{json.dumps(r['breakdown'], sort_keys=True, separators=(',', ':'))}"
        for r in ordered
    ]
    return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


def checksum_from_entries(entries: Sequence[UnitScoreEntry]) -> str:
    return compute_checksum([
        {
            "rank": e.rank,
            "unit_id": e.unit_id,
            "total": e.total,
            "demerit_count": e.demerit_count,
            "breakdown": e.breakdown,
        }
        for e in entries
    ])


def verify_snapshot(snapshot: RankingSnapshot) -> bool:
    """True when the stored checksum matches the entries (or none was stored)."""
    if not snapshot.checksum_hash:
        return True
    computed = checksum_from_entries(snapshot.entries)
    if computed != snapshot.checksum_hash:
        logger.error(
            f"Snapshot integrity check FAILED: championship={snapshot.championship_id}, "
            f"version={snapshot.version}, stored={snapshot.checksum_hash}, computed={computed}"
        )
        return False
    return True


# =============================================================================
# Synchronizer
# =============================================================================

class RankingSynchronizer:
    """
    Owns every write to ranking snapshots and the current-snapshot pointer.

    Works on a session factory rather than a request session: the lease is
    acquired and released in short transactions of its own, separate from
    the one that publishes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        catalog: Optional[ScoreCatalog] = None,
        collector: Optional[EventCollector] = None,
        lease_seconds: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.catalog = catalog or get_catalog()
        self.collector = collector or EventCollector()
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.SYNC_LEASE_SECONDS
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.SYNC_TIMEOUT_SECONDS
        self._runs: Dict[int, SyncRun] = {}

    # -------------------------------------------------------------------------
    # initialize
    # -------------------------------------------------------------------------

    async def initialize(self, championship_id: int, caller: Caller) -> SyncResult:
        """
        Publish version 1: one zero score per active unit.

        Missing ClassProgress rows are created with the default targets.
        Rejects (never overwrites) when any snapshot already exists.

        Raises:
            NotFoundError, ChampionshipClosedError, InvalidStateError (draft),
            AlreadyInitializedError
        """
        caller.require_admin()
        started = time.monotonic()

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    championship = await _load_championship(db, championship_id)
                    if championship.is_closed:
                        raise ChampionshipClosedError(championship_id)
                    if not championship.is_active:
                        raise InvalidStateError(
                            f"Championship {championship_id} must be active to be initialized"
                        )

                    existing = await db.execute(
                        select(func.count(RankingSnapshot.id)).where(
                            RankingSnapshot.championship_id == championship_id
                        )
                    )
                    if championship.current_snapshot_version is not None or existing.scalar_one() > 0:
                        raise AlreadyInitializedError(
                            championship_id, championship.current_snapshot_version
                        )

                    units = await _active_units(db)
                    await _seed_class_progress(db, championship_id, [u.unit_id for u in units], caller)
                    await db.flush()

                    scores = zero_scores(units, self.catalog)
                    result = await self._publish(
                        db, championship, scores, version=1, caller=caller, lease_token=None
                    )
        except IntegrityError:
            # a concurrent initialize won the unique (championship_id, version) race
            logger.warning(f"Concurrent initialize rejected for championship {championship_id}")
            raise AlreadyInitializedError(championship_id)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Championship initialized: championship={championship_id}, version=1, "
            f"units={result.unit_count}, duration_ms={result.duration_ms}"
        )
        return result

    # -------------------------------------------------------------------------
    # synchronize
    # -------------------------------------------------------------------------

    async def synchronize(
        self,
        championship_id: int,
        caller: Caller,
        timeout: Optional[float] = None,
    ) -> SyncResult:
        """
        Recompute every unit's score and publish version + 1.

        Raises:
            NotFoundError, ChampionshipClosedError, InvalidStateError (not
            initialized), SyncInProgressError, PartialSourceFailureError,
            SyncAbortedError
        """
        caller.require_admin()
        await self._check_ready(championship_id)
        token = await self._acquire_lease(championship_id)
        try:
            return await self._run_bounded(championship_id, caller, token, timeout)
        finally:
            await self._release_lease(championship_id, token)

    async def launch(self, championship_id: int, caller: Caller) -> dict:
        """
        Start a synchronization in the background.

        The lease is taken before returning, so an overlapping call fails
        immediately with SyncInProgressError instead of reporting "started".
        """
        caller.require_admin()
        await self._check_ready(championship_id)
        token = await self._acquire_lease(championship_id)

        run = SyncRun(championship_id=championship_id, started_at=datetime.utcnow())
        self._runs[championship_id] = run
        run.task = asyncio.create_task(self._run_in_background(run, caller, token))
        logger.info(f"Background synchronization started for championship {championship_id}")
        return {"outcome": "started", "championship_id": championship_id}

    async def status(self, championship_id: int, caller: Caller) -> dict:
        """Last background run known to this process, else the lease state."""
        caller.require_admin()
        async with self._session_factory() as db:
            championship = await _load_championship(db, championship_id)
            current_version = championship.current_snapshot_version
            lease_held = (
                championship.sync_lease_token is not None
                and championship.sync_lease_expires_at is not None
                and championship.sync_lease_expires_at > datetime.utcnow()
            )

        run = self._runs.get(championship_id)
        if run is not None:
            data = run.to_dict()
        else:
            data = {
                "championship_id": championship_id,
                "status": RUN_RUNNING if lease_held else RUN_IDLE,
            }
        data["current_version"] = current_version
        return data

    async def wait_for_run(self, championship_id: int) -> Optional[SyncRun]:
        """Await the background run, if any, and let it finish."""
        run = self._runs.get(championship_id)
        if run is not None and run.task is not None:
            await asyncio.gather(run.task, return_exceptions=True)
        return run

    async def shutdown(self) -> None:
        """
        Cancel background runs still in flight and wait for them to unwind.

        A cancelled run is marked failed and releases its lease; the
        previous snapshot stays current.
        """
        tasks = [run.task for run in self._runs.values() if run.task is not None and not run.task.done()]
        if not tasks:
            return
        logger.warning(f"Cancelling {len(tasks)} background synchronization run(s) at shutdown")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # internals
    # -------------------------------------------------------------------------

    async def _check_ready(self, championship_id: int) -> None:
        async with self._session_factory() as db:
            championship = await _load_championship(db, championship_id)
            if championship.is_closed:
                raise ChampionshipClosedError(championship_id)
            if championship.current_snapshot_version is None:
                raise InvalidStateError(
                    f"Championship {championship_id} has not been initialized"
                )

    async def _acquire_lease(self, championship_id: int) -> str:
        token = uuid.uuid4().hex
        now = datetime.utcnow()
        async with self._session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    update(Championship)
                    .where(
                        Championship.id == championship_id,
                        Championship.status == ChampionshipStatus.ACTIVE.value,
                        or_(
                            Championship.sync_lease_token.is_(None),
                            Championship.sync_lease_expires_at.is_(None),
                            Championship.sync_lease_expires_at < now,
                        ),
                    )
                    .values(
                        sync_lease_token=token,
                        sync_lease_expires_at=now + timedelta(seconds=self.lease_seconds),
                    )
                    .execution_options(synchronize_session=False)
                )
                acquired = result.rowcount == 1

        if acquired:
            return token

        async with self._session_factory() as db:
            championship = await _load_championship(db, championship_id)
            if championship.is_closed:
                raise ChampionshipClosedError(championship_id)
        logger.warning(f"Synchronization rejected: already running for championship {championship_id}")
        raise SyncInProgressError(championship_id)

    async def _release_lease(self, championship_id: int, token: str) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await db.execute(
                    update(Championship)
                    .where(
                        Championship.id == championship_id,
                        Championship.sync_lease_token == token,
                    )
                    .values(sync_lease_token=None, sync_lease_expires_at=None)
                    .execution_options(synchronize_session=False)
                )

    async def _run_bounded(
        self,
        championship_id: int,
        caller: Caller,
        token: str,
        timeout: Optional[float],
    ) -> SyncResult:
        limit = timeout if timeout is not None else self.timeout_seconds
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self._run(championship_id, caller, token), timeout=limit)
        except asyncio.TimeoutError:
            logger.error(
                f"Synchronization timed out after {limit}s for championship {championship_id}; "
                f"previous snapshot kept"
            )
            raise SyncAbortedError(championship_id, reason="timeout")
        except asyncio.CancelledError:
            logger.warning(f"Synchronization cancelled for championship {championship_id}")
            raise

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Ranking synchronized: championship={championship_id}, version={result.version}, "
            f"units={result.unit_count}, duration_ms={result.duration_ms}"
        )
        return result

    async def _run(self, championship_id: int, caller: Caller, token: str) -> SyncResult:
        async with self._session_factory() as db:
            async with db.begin():
                championship = await _load_championship(db, championship_id)
                units = await _active_units(db)
                scope = CollectionScope(
                    championship_id=championship_id,
                    start_date=championship.start_date,
                    end_date=championship.end_date,
                    unit_ids=frozenset(u.unit_id for u in units),
                )
                events = await self.collector.collect_all(db, scope)
                scores = aggregate(units, events, self.catalog)

                latest = await db.execute(
                    select(func.max(RankingSnapshot.version)).where(
                        RankingSnapshot.championship_id == championship_id
                    )
                )
                version = (latest.scalar_one() or 0) + 1

                return await self._publish(
                    db, championship, scores, version=version, caller=caller, lease_token=token
                )

    async def _run_in_background(self, run: SyncRun, caller: Caller, token: str) -> None:
        try:
            run.result = await self._run_bounded(run.championship_id, caller, token, None)
            run.status = RUN_COMPLETED
        except APIError as e:
            run.status = RUN_FAILED
            run.error_code = e.code
            run.error_message = e.message
        except asyncio.CancelledError:
            run.status = RUN_FAILED
            run.error_code = ErrorCode.SYNC_ABORTED
            run.error_message = "cancelled"
            raise
        except Exception as e:
            logger.exception(f"Background synchronization failed for championship {run.championship_id}")
            run.status = RUN_FAILED
            run.error_code = ErrorCode.INTERNAL_ERROR
            run.error_message = type(e).__name__
        finally:
            run.finished_at = datetime.utcnow()
            await self._release_lease(run.championship_id, token)

    async def _publish(
        self,
        db: AsyncSession,
        championship: Championship,
        scores: List[UnitScore],
        version: int,
        caller: Caller,
        lease_token: Optional[str],
    ) -> SyncResult:
        """Insert snapshot + entries and move the pointer. Caller owns the transaction."""
        goals = await goals_for_units(db, championship, [s.unit_id for s in scores])
        for score in scores:
            score.goals = [g.to_dict() for g in goals.get(score.unit_id, [])]

        synced_at = datetime.utcnow()
        snapshot = RankingSnapshot(
            championship_id=championship.id,
            version=version,
            synced_at=synced_at,
            synced_by=caller.user_id,
            unit_count=len(scores),
        )
        db.add(snapshot)
        await db.flush()

        for score in scores:
            db.add(UnitScoreEntry(
                snapshot_id=snapshot.id,
                unit_id=score.unit_id,
                unit_name=score.unit_name,
                primary_color=score.colors.get("primary"),
                secondary_color=score.colors.get("secondary"),
                rank=score.rank,
                total=score.total,
                demerit_count=score.demerit_count,
                breakdown_json=json.dumps(score.subtotals, sort_keys=True),
                goals_json=json.dumps(score.goals),
            ))

        checksum = None
        if feature_flags.FEATURE_SNAPSHOT_CHECKSUM:
            checksum = compute_checksum([
                {
                    "rank": s.rank,
                    "unit_id": s.unit_id,
                    "total": s.total,
                    "demerit_count": s.demerit_count,
                    "breakdown": s.subtotals,
                }
                for s in scores
            ])
            snapshot.checksum_hash = checksum
        await db.flush()

        conditions = [
            Championship.id == championship.id,
            Championship.status != ChampionshipStatus.CLOSED.value,
        ]
        if lease_token is not None:
            conditions.append(Championship.sync_lease_token == lease_token)
        moved = await db.execute(
            update(Championship)
            .where(*conditions)
            .values(current_snapshot_version=version, updated_at=synced_at)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            await _raise_publication_refused(db, championship.id)

        return SyncResult(
            championship_id=championship.id,
            version=version,
            synced_at=synced_at,
            unit_count=len(scores),
            checksum_hash=checksum,
        )


# =============================================================================
# Helper Functions
# =============================================================================

async def _load_championship(db: AsyncSession, championship_id: int) -> Championship:
    result = await db.execute(select(Championship).where(Championship.id == championship_id))
    championship = result.scalar_one_or_none()
    if championship is None:
        raise NotFoundError("Championship", championship_id, code=ErrorCode.CHAMPIONSHIP_NOT_FOUND)
    return championship


async def _active_units(db: AsyncSession) -> List[UnitRef]:
    result = await db.execute(
        select(Unit).where(Unit.is_active.is_(True)).order_by(Unit.id)
    )
    return [
        UnitRef(
            unit_id=u.id,
            name=u.name,
            primary_color=u.primary_color,
            secondary_color=u.secondary_color,
        )
        for u in result.scalars()
    ]


async def _seed_class_progress(
    db: AsyncSession,
    championship_id: int,
    unit_ids: List[int],
    caller: Caller,
) -> int:
    if not unit_ids:
        return 0
    result = await db.execute(
        select(ClassProgress.unit_id, ClassProgress.tier).where(
            ClassProgress.championship_id == championship_id,
            ClassProgress.unit_id.in_(unit_ids),
        )
    )
    present = {(unit_id, tier) for unit_id, tier in result.all()}
    created = 0
    for unit_id in unit_ids:
        for tier in ClassTier:
            if (unit_id, tier.value) in present:
                continue
            db.add(ClassProgress(
                championship_id=championship_id,
                unit_id=unit_id,
                tier=tier.value,
                target_count=DEFAULT_TARGETS[tier],
                achieved_count=0,
                manual_override=False,
                updated_by=caller.user_id,
            ))
            created += 1
    logger.debug(f"Seeded {created} class progress rows for championship {championship_id}")
    return created


async def _raise_publication_refused(db: AsyncSession, championship_id: int) -> None:
    result = await db.execute(
        select(Championship.status).where(Championship.id == championship_id)
    )
    if result.scalar_one_or_none() == ChampionshipStatus.CLOSED.value:
        raise ChampionshipClosedError(championship_id)
    logger.error(f"Lease lost during synchronization of championship {championship_id}")
    raise SyncAbortedError(championship_id, reason="lease lost")
