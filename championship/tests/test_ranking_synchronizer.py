"""
Ranking Synchronizer Tests

Covers:
- initialize: seeding, rejection without overwrite, lifecycle guards
- synchronize: totals, idempotent recomputation, version increments
- mutual exclusion: concurrent runs, lease expiry
- abort: source failure and timeout keep the prior snapshot current
- retroactive exclusion of voided demerits, late demerits counted next run
- background launch, status and shutdown
"""
import asyncio
from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update

from championship.errors import (
    AlreadyInitializedError, ChampionshipClosedError, ForbiddenError, InvalidStateError,
    NotFoundError, PartialSourceFailureError, SyncAbortedError, SyncInProgressError,
)
from championship.orm import (
    Championship, ChampionshipStatus, ClassProgress, RankingSnapshot,
)
from championship.security.capabilities import counselor_caller
from championship.services import demerit_service
from championship.services.championship_service import ChampionshipService
from championship.services.event_collector import DEFAULT_SOURCES, EventCollector, EventSource
from championship.services.ranking_synchronizer import (
    RUN_COMPLETED, RUN_FAILED, RUN_IDLE, RankingSynchronizer, verify_snapshot,
)

DAY = date(2026, 3, 7)


class SlowSource(EventSource):
    name = "slow"

    def __init__(self, delay: float):
        self.delay = delay

    async def events(self, db, scope):
        await asyncio.sleep(self.delay)
        return
        yield


class BrokenSource(EventSource):
    name = "payments"

    async def events(self, db, scope):
        raise ConnectionError("billing database unreachable")
        yield


def slow_collector(delay: float) -> EventCollector:
    return EventCollector([SlowSource(delay), *DEFAULT_SOURCES])


async def load_championship(session_factory, championship_id) -> Championship:
    async with session_factory() as s:
        return await s.get(Championship, championship_id)


async def load_snapshot(session_factory, championship_id, version) -> RankingSnapshot:
    async with session_factory() as s:
        result = await s.execute(
            select(RankingSnapshot).where(
                RankingSnapshot.championship_id == championship_id,
                RankingSnapshot.version == version,
            )
        )
        return result.scalar_one()


async def snapshot_count(session_factory, championship_id) -> int:
    async with session_factory() as s:
        result = await s.execute(
            select(func.count(RankingSnapshot.id)).where(RankingSnapshot.championship_id == championship_id)
        )
        return result.scalar_one()


def ranking_of(snapshot):
    return [(e.unit_id, e.rank, e.total, e.breakdown) for e in snapshot.entries]


@pytest_asyncio.fixture
async def league(seed):
    """Active championship with two active units and one inactive unit."""
    championship = await seed.championship()
    alpha = await seed.unit("Alpha")
    bravo = await seed.unit("Bravo")
    dormant = await seed.unit("Dormant", is_active=False)
    return championship, alpha, bravo, dormant


@pytest_asyncio.fixture
async def initialized(league, synchronizer, admin):
    championship = league[0]
    await synchronizer.initialize(championship.id, admin)
    return league


# =============================================================================
# initialize
# =============================================================================

class TestInitialize:

    @pytest.mark.asyncio
    async def test_seeds_version_one_with_zero_scores(self, league, synchronizer, admin, session_factory):
        championship, alpha, bravo, _ = league

        result = await synchronizer.initialize(championship.id, admin)

        assert result.version == 1
        assert result.unit_count == 2
        snapshot = await load_snapshot(session_factory, championship.id, 1)
        assert [e.unit_name for e in snapshot.entries] == ["Alpha", "Bravo"]
        assert all(e.total == 0 for e in snapshot.entries)
        assert [e.rank for e in snapshot.entries] == [1, 2]
        current = await load_championship(session_factory, championship.id)
        assert current.current_snapshot_version == 1

    @pytest.mark.asyncio
    async def test_seeds_class_progress_rows(self, league, synchronizer, admin, session_factory):
        championship = league[0]
        await synchronizer.initialize(championship.id, admin)

        async with session_factory() as s:
            result = await s.execute(
                select(func.count(ClassProgress.id)).where(ClassProgress.championship_id == championship.id)
            )
            assert result.scalar_one() == 8

    @pytest.mark.asyncio
    async def test_second_initialize_rejected_and_snapshot_untouched(
        self, initialized, synchronizer, admin, session_factory, seed
    ):
        championship, alpha, _, _ = initialized
        await seed.attendance(alpha, DAY, count=3)
        await synchronizer.synchronize(championship.id, admin)
        before = ranking_of(await load_snapshot(session_factory, championship.id, 2))

        with pytest.raises(AlreadyInitializedError):
            await synchronizer.initialize(championship.id, admin)

        current = await load_championship(session_factory, championship.id)
        assert current.current_snapshot_version == 2
        assert ranking_of(await load_snapshot(session_factory, championship.id, 2)) == before
        assert await snapshot_count(session_factory, championship.id) == 2

    @pytest.mark.asyncio
    async def test_unknown_championship(self, synchronizer, admin):
        with pytest.raises(NotFoundError):
            await synchronizer.initialize(999, admin)

    @pytest.mark.asyncio
    async def test_draft_championship_rejected(self, seed, synchronizer, admin):
        draft = await seed.championship(status=ChampionshipStatus.DRAFT)
        with pytest.raises(InvalidStateError):
            await synchronizer.initialize(draft.id, admin)

    @pytest.mark.asyncio
    async def test_closed_championship_rejected(self, seed, synchronizer, admin):
        closed = await seed.championship(status=ChampionshipStatus.CLOSED)
        with pytest.raises(ChampionshipClosedError):
            await synchronizer.initialize(closed.id, admin)

    @pytest.mark.asyncio
    async def test_requires_admin(self, league, synchronizer):
        championship, alpha, _, _ = league
        with pytest.raises(ForbiddenError):
            await synchronizer.initialize(championship.id, counselor_caller(7, alpha.id))


# =============================================================================
# synchronize
# =============================================================================

class TestSynchronize:

    @pytest.mark.asyncio
    async def test_requires_initialize_first(self, league, synchronizer, admin):
        with pytest.raises(InvalidStateError):
            await synchronizer.synchronize(league[0].id, admin)

    @pytest.mark.asyncio
    async def test_totals_match_sources(self, initialized, synchronizer, admin, seed, session_factory):
        championship, alpha, bravo, dormant = initialized
        await seed.attendance(alpha, DAY, "punctual", count=2)
        await seed.attendance(bravo, DAY, "punctual", count=1)
        await seed.attendance(bravo, DAY, "late", count=1)
        await seed.demerit(championship, alpha, DAY, points=-10)
        await seed.attendance(dormant, DAY, "punctual", count=10)

        result = await synchronizer.synchronize(championship.id, admin)

        assert result.version == 2
        snapshot = await load_snapshot(session_factory, championship.id, 2)
        by_unit = {e.unit_id: e for e in snapshot.entries}
        assert set(by_unit) == {alpha.id, bravo.id}
        assert by_unit[alpha.id].total == 10
        assert by_unit[alpha.id].breakdown["demerit"] == -10
        assert by_unit[alpha.id].demerit_count == 1
        assert by_unit[bravo.id].total == 15
        for entry in snapshot.entries:
            assert entry.total == sum(entry.breakdown.values())
        assert by_unit[bravo.id].rank == 1

    @pytest.mark.asyncio
    async def test_recomputation_is_idempotent(self, initialized, synchronizer, admin, seed, session_factory):
        championship, alpha, bravo, _ = initialized
        await seed.attendance(alpha, DAY, count=4)
        await seed.badge(bravo, DAY, count=1)
        await seed.demerit(championship, bravo, DAY, points=-20)

        first = await synchronizer.synchronize(championship.id, admin)
        second = await synchronizer.synchronize(championship.id, admin)

        assert (first.version, second.version) == (2, 3)
        assert ranking_of(await load_snapshot(session_factory, championship.id, 2)) == \
            ranking_of(await load_snapshot(session_factory, championship.id, 3))
        assert first.checksum_hash == second.checksum_hash

    @pytest.mark.asyncio
    async def test_snapshot_entries_carry_goals(self, initialized, synchronizer, admin, seed, session_factory):
        championship, alpha, _, _ = initialized
        await seed.badge(alpha, DAY, count=5)

        await synchronizer.synchronize(championship.id, admin)

        snapshot = await load_snapshot(session_factory, championship.id, 2)
        alpha_entry = next(e for e in snapshot.entries if e.unit_id == alpha.id)
        specialties = next(g for g in alpha_entry.goals if g["tier"] == "specialties")
        assert specialties["achieved_count"] == 5
        assert specialties["remaining"] == 15

    @pytest.mark.asyncio
    async def test_checksum_detects_tampering(self, initialized, synchronizer, admin, seed, session_factory):
        championship, alpha, _, _ = initialized
        await seed.attendance(alpha, DAY, count=1)
        await synchronizer.synchronize(championship.id, admin)

        snapshot = await load_snapshot(session_factory, championship.id, 2)
        assert verify_snapshot(snapshot) is True

        snapshot.entries[0].total += 1000
        assert verify_snapshot(snapshot) is False

    @pytest.mark.asyncio
    async def test_voided_demerit_excluded_on_next_sync(
        self, initialized, synchronizer, admin, seed, session_factory, db
    ):
        championship, alpha, _, _ = initialized
        demerit = await seed.demerit(championship, alpha, DAY, points=-30)
        await synchronizer.synchronize(championship.id, admin)

        await demerit_service.void_demerit(db, admin, demerit.id, reason="recorded twice")
        # voiding alone does not republish
        current = await load_championship(session_factory, championship.id)
        assert current.current_snapshot_version == 2

        await synchronizer.synchronize(championship.id, admin)
        snapshot = await load_snapshot(session_factory, championship.id, 3)
        alpha_entry = next(e for e in snapshot.entries if e.unit_id == alpha.id)
        assert alpha_entry.total == 0
        assert alpha_entry.demerit_count == 0

    @pytest.mark.asyncio
    async def test_demerit_recorded_mid_run_counts_on_next_sync(
        self, initialized, admin, session_factory, catalog
    ):
        championship, alpha, _, _ = initialized
        synchronizer = RankingSynchronizer(session_factory, catalog=catalog, collector=slow_collector(0.5))

        running = asyncio.create_task(synchronizer.synchronize(championship.id, admin))
        await asyncio.sleep(0.1)
        async with session_factory() as s:
            await demerit_service.create_demerit(
                s, admin, championship.id, alpha.id, DAY, "d1_inattention", today=DAY
            )
        await running

        result = await synchronizer.synchronize(championship.id, admin)

        snapshot = await load_snapshot(session_factory, championship.id, result.version)
        alpha_entry = next(e for e in snapshot.entries if e.unit_id == alpha.id)
        assert alpha_entry.total == -5
        assert alpha_entry.demerit_count == 1

    @pytest.mark.asyncio
    async def test_closed_championship_rejected(self, initialized, synchronizer, admin, db):
        championship = initialized[0]
        await ChampionshipService.close(db, admin, championship.id)

        with pytest.raises(ChampionshipClosedError):
            await synchronizer.synchronize(championship.id, admin)


# =============================================================================
# Mutual exclusion
# =============================================================================

class TestMutualExclusion:

    @pytest.mark.asyncio
    async def test_concurrent_syncs_only_one_succeeds(self, initialized, admin, session_factory, catalog):
        championship = initialized[0]
        synchronizer = RankingSynchronizer(session_factory, catalog=catalog, collector=slow_collector(0.5))

        results = await asyncio.gather(
            synchronizer.synchronize(championship.id, admin),
            synchronizer.synchronize(championship.id, admin),
            synchronizer.synchronize(championship.id, admin),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, SyncInProgressError)]
        assert len(successes) == 1
        assert len(rejected) == 2
        assert await snapshot_count(session_factory, championship.id) == 2

    @pytest.mark.asyncio
    async def test_separate_instances_share_the_lease(self, initialized, admin, session_factory, catalog):
        """Two synchronizers stand in for two worker processes."""
        championship = initialized[0]
        first = RankingSynchronizer(session_factory, catalog=catalog, collector=slow_collector(0.5))
        second = RankingSynchronizer(session_factory, catalog=catalog)

        running = asyncio.create_task(first.synchronize(championship.id, admin))
        await asyncio.sleep(0.1)
        with pytest.raises(SyncInProgressError):
            await second.synchronize(championship.id, admin)

        result = await running
        assert result.version == 2

    @pytest.mark.asyncio
    async def test_held_lease_rejects(self, initialized, synchronizer, admin, session_factory):
        championship = initialized[0]
        async with session_factory() as s:
            await s.execute(
                update(Championship)
                .where(Championship.id == championship.id)
                .values(sync_lease_token="other-worker", sync_lease_expires_at=datetime.utcnow() + timedelta(minutes=5))
            )
            await s.commit()

        with pytest.raises(SyncInProgressError):
            await synchronizer.synchronize(championship.id, admin)

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimed(self, initialized, synchronizer, admin, session_factory):
        championship = initialized[0]
        async with session_factory() as s:
            await s.execute(
                update(Championship)
                .where(Championship.id == championship.id)
                .values(sync_lease_token="crashed-worker", sync_lease_expires_at=datetime.utcnow() - timedelta(minutes=1))
            )
            await s.commit()

        result = await synchronizer.synchronize(championship.id, admin)

        assert result.version == 2
        current = await load_championship(session_factory, championship.id)
        assert current.sync_lease_token is None

    @pytest.mark.asyncio
    async def test_lease_released_after_success(self, initialized, synchronizer, admin, session_factory):
        championship = initialized[0]
        await synchronizer.synchronize(championship.id, admin)
        current = await load_championship(session_factory, championship.id)
        assert current.sync_lease_token is None
        assert current.sync_lease_expires_at is None


# =============================================================================
# Abort
# =============================================================================

class TestAbort:

    @pytest.mark.asyncio
    async def test_source_failure_keeps_prior_snapshot(self, initialized, admin, session_factory, catalog, seed):
        championship, alpha, _, _ = initialized
        await seed.attendance(alpha, DAY, count=2)
        broken = RankingSynchronizer(
            session_factory, catalog=catalog, collector=EventCollector([*DEFAULT_SOURCES, BrokenSource()])
        )

        with pytest.raises(PartialSourceFailureError) as exc:
            await broken.synchronize(championship.id, admin)

        assert exc.value.source == "payments"
        current = await load_championship(session_factory, championship.id)
        assert current.current_snapshot_version == 1
        assert current.sync_lease_token is None
        assert await snapshot_count(session_factory, championship.id) == 1

        healthy = RankingSynchronizer(session_factory, catalog=catalog)
        assert (await healthy.synchronize(championship.id, admin)).version == 2

    @pytest.mark.asyncio
    async def test_timeout_aborts_without_publishing(self, initialized, admin, session_factory, catalog):
        championship = initialized[0]
        synchronizer = RankingSynchronizer(session_factory, catalog=catalog, collector=slow_collector(2))

        with pytest.raises(SyncAbortedError) as exc:
            await synchronizer.synchronize(championship.id, admin, timeout=0.1)

        assert exc.value.status_code == 504
        current = await load_championship(session_factory, championship.id)
        assert current.current_snapshot_version == 1
        assert current.sync_lease_token is None
        assert await snapshot_count(session_factory, championship.id) == 1

    @pytest.mark.asyncio
    async def test_close_during_sync_blocks_publication(self, initialized, admin, session_factory, catalog):
        championship = initialized[0]
        synchronizer = RankingSynchronizer(session_factory, catalog=catalog, collector=slow_collector(0.5))

        running = asyncio.create_task(synchronizer.synchronize(championship.id, admin))
        await asyncio.sleep(0.1)
        async with session_factory() as s:
            await ChampionshipService.close(s, admin, championship.id)

        with pytest.raises(ChampionshipClosedError):
            await running
        current = await load_championship(session_factory, championship.id)
        assert current.current_snapshot_version == 1


# =============================================================================
# Background runs
# =============================================================================

class TestLaunch:

    @pytest.mark.asyncio
    async def test_launch_reports_started_then_completed(self, initialized, admin, session_factory, catalog):
        championship = initialized[0]
        synchronizer = RankingSynchronizer(session_factory, catalog=catalog, collector=slow_collector(0.3))

        outcome = await synchronizer.launch(championship.id, admin)
        assert outcome["outcome"] == "started"

        with pytest.raises(SyncInProgressError):
            await synchronizer.launch(championship.id, admin)

        await synchronizer.wait_for_run(championship.id)
        status = await synchronizer.status(championship.id, admin)
        assert status["status"] == RUN_COMPLETED
        assert status["result"]["version"] == 2
        assert status["current_version"] == 2

    @pytest.mark.asyncio
    async def test_status_idle_without_runs(self, initialized, synchronizer, admin):
        status = await synchronizer.status(initialized[0].id, admin)
        assert status["status"] == RUN_IDLE
        assert status["current_version"] == 1

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_launch(self, initialized, admin, session_factory, catalog):
        championship = initialized[0]
        synchronizer = RankingSynchronizer(session_factory, catalog=catalog, collector=slow_collector(5))
        await synchronizer.launch(championship.id, admin)
        await asyncio.sleep(0.1)

        await synchronizer.shutdown()

        status = await synchronizer.status(championship.id, admin)
        assert status["status"] == RUN_FAILED
        assert status["error"]["code"] == "SYNC_ABORTED"
        assert status["current_version"] == 1
        current = await load_championship(session_factory, championship.id)
        assert current.sync_lease_token is None

    @pytest.mark.asyncio
    async def test_shutdown_without_runs_is_a_no_op(self, synchronizer):
        await synchronizer.shutdown()
