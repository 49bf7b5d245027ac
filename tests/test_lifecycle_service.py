import asyncio
import logging
from datetime import timedelta

import pytest

from src.config import NotificationKind, WorkOrderStatus as S
from src.core import (
    InvalidTransitionException,
    RepositoryException,
    ResourceNotFoundException,
    ValidationException,
)
from src.workorders.application import StaticSLAConfigProvider, WorkOrderCreateDTO
from src.workorders.domain import WorkOrderSLAConfig

from tests.conftest import T0, InMemoryWorkOrderRepository, make_order

HOUR_MS = 3_600_000
TENANT = "acme"
PLANT = "plant-7"


async def walk(service, order_id, *statuses):
    result = None
    for status in statuses:
        result = await service.apply_update(TENANT, order_id, {"status": status})
    return result


@pytest.fixture
def in_execution(store):
    return store.add(make_order(
        status=S.IN_EXECUTION,
        analysis_started_at=T0,
        started_at=T0,
    ))


class TestCreate:
    async def test_high_priority_deadline(self, service, store, clock):
        order = await service.create_work_order(
            TENANT, PLANT, WorkOrderCreateDTO(asset_id="pump-12", title=" Bearing ", priority="high")
        )
        assert order.status == S.OPEN
        assert order.title == "Bearing"
        assert order.sla_deadline == clock.now + timedelta(hours=24)
        assert order.sla_exclude_pause is True
        assert (TENANT, order.id) in store.orders

    async def test_scheduled_time_seeds_the_deadline(self, service, clock):
        scheduled = clock.now + timedelta(days=1)
        order = await service.create_work_order(
            TENANT, PLANT,
            WorkOrderCreateDTO(asset_id="a", title="t", priority="critical", scheduled_at=scheduled),
        )
        assert order.scheduled_at == scheduled
        assert order.sla_deadline == scheduled + timedelta(hours=8)

    async def test_tenant_override_hours(self, make_service, clock):
        service = make_service(config_provider=StaticSLAConfigProvider(
            WorkOrderSLAConfig(tenant_overrides={TENANT: {"low": 10}})
        ))
        order = await service.create_work_order(
            TENANT, PLANT, WorkOrderCreateDTO(asset_id="a", title="t", priority="low")
        )
        assert order.sla_deadline == clock.now + timedelta(hours=10)

    async def test_created_event_and_side_effects(self, service, notifier, search_indexer, cache_invalidator, call_log):
        order = await service.create_work_order(
            TENANT, PLANT, WorkOrderCreateDTO(asset_id="a", title="t")
        )
        await service.drain_side_effects()

        assert call_log.calls == ["cache", "search", "notify"]
        assert notifier.kinds() == ["created"]
        assert search_indexer.documents[0].id == order.id
        assert cache_invalidator.calls == [(TENANT, PLANT, order.id)]


class TestTransitions:
    async def test_skipping_analysis_is_rejected(self, service, store):
        store.add(make_order())
        with pytest.raises(InvalidTransitionException) as exc:
            await service.apply_update(TENANT, "wo-1", {"status": "in_execution"})

        assert exc.value.message == "invalid transition: open → in_execution"
        assert exc.value.details == {"current": "open", "requested": "in_execution"}
        assert store.writes == 0
        assert store.rollbacks == 1

    async def test_pause_resume_accumulates_paused_time(self, service, store, clock):
        store.add(make_order())
        await walk(service, "wo-1", "in_analysis", "in_execution")
        started_at = store.orders[(TENANT, "wo-1")].started_at

        paused = await walk(service, "wo-1", "paused")
        assert paused.order.sla_pause_started_at == clock.now
        assert paused.order.paused_at == clock.now

        clock.advance(hours=2)
        resumed = await walk(service, "wo-1", "in_execution")

        order = resumed.order
        assert order.status == S.IN_EXECUTION
        assert order.sla_paused_ms == 2 * HOUR_MS
        assert order.sla_pause_started_at is None
        assert order.paused_at is None
        assert order.started_at == started_at

    async def test_repeated_cycles_sum_pause_durations(self, service, in_execution, clock):
        expected = 0
        for minutes in (15, 40, 5):
            await walk(service, "wo-1", "paused")
            clock.advance(minutes=minutes)
            expected += minutes * 60_000
            result = await walk(service, "wo-1", "in_execution")
            assert result.order.sla_paused_ms == expected
            clock.advance(minutes=1)

    async def test_paused_order_cannot_complete(self, service, in_execution):
        await walk(service, "wo-1", "paused")
        with pytest.raises(InvalidTransitionException) as exc:
            await walk(service, "wo-1", "completed")
        assert "a paused order can only resume to in_execution" in exc.value.message

    async def test_cancel_from_pause_flushes_pending_delta(self, service, in_execution, clock):
        await walk(service, "wo-1", "paused")
        clock.advance(minutes=90)
        result = await walk(service, "wo-1", "cancelled")

        assert result.order.status == S.CANCELLED
        assert result.order.sla_paused_ms == 90 * 60_000
        assert result.order.sla_pause_started_at is None
        assert result.order.cancelled_at == clock.now

    async def test_closed_is_final(self, service, store):
        store.add(make_order(status=S.COMPLETED))
        result = await walk(service, "wo-1", "closed")
        assert result.order.closed_at is not None

        with pytest.raises(InvalidTransitionException) as exc:
            await walk(service, "wo-1", "in_analysis")
        assert exc.value.message.startswith("order already finalized")

    @pytest.mark.parametrize("final", [S.CLOSED, S.CANCELLED])
    async def test_terminal_lock_rejects_same_status(self, service, store, final):
        store.add(make_order(status=final))
        with pytest.raises(InvalidTransitionException):
            await service.apply_update(TENANT, "wo-1", {"status": final.value, "notes": "again"})
        assert store.writes == 0

    async def test_final_order_still_takes_notes(self, service, store):
        store.add(make_order(status=S.CLOSED))
        result = await service.apply_update(TENANT, "wo-1", {"notes": "  audited  "})
        assert result.order.notes == "audited"
        assert result.status_changed is False

    async def test_completed_can_be_cancelled(self, service, store):
        store.add(make_order(status=S.COMPLETED))
        result = await walk(service, "wo-1", "cancelled")
        assert result.order.status == S.CANCELLED

    async def test_legacy_status_in_patch(self, service, store):
        store.add(make_order(status=S.IN_ANALYSIS))
        result = await walk(service, "wo-1", "in_progress")
        assert result.order.status == S.IN_EXECUTION
        assert result.order.started_at is not None

    async def test_explicit_timestamp_is_not_restamped(self, service, store):
        store.add(make_order())
        result = await service.apply_update(
            TENANT, "wo-1", {"status": "in_analysis", "analysis_started_at": "2024-03-01T06:30:00Z"}
        )
        assert result.order.analysis_started_at.isoformat() == "2024-03-01T06:30:00+00:00"

    async def test_status_change_event(self, service, store, notifier):
        store.add(make_order())
        await walk(service, "wo-1", "in_analysis")
        await service.drain_side_effects()

        event = notifier.events[-1]
        assert event.kind == NotificationKind.STATUS_CHANGED
        assert (event.from_status, event.to_status) == (S.OPEN, S.IN_ANALYSIS)


class TestConcurrency:
    async def test_concurrent_pauses_start_the_clock_once(self, make_service, store, in_execution, clock, notifier):
        first = make_service(repository=InMemoryWorkOrderRepository(store))
        second = make_service(repository=InMemoryWorkOrderRepository(store))

        results = await asyncio.gather(
            first.apply_update(TENANT, "wo-1", {"status": "paused"}),
            second.apply_update(TENANT, "wo-1", {"status": "paused"}),
        )
        await first.drain_side_effects()

        assert sorted(r.status_changed for r in results) == [False, True]
        order = store.orders[(TENANT, "wo-1")]
        assert order.status == S.PAUSED
        assert order.sla_pause_started_at == clock.now
        assert notifier.kinds().count("status_changed") == 1


class TestFailures:
    async def test_not_found(self, service, store):
        with pytest.raises(ResourceNotFoundException):
            await service.apply_update(TENANT, "missing", {"status": "in_analysis"})
        assert store.rollbacks == 1

    async def test_plant_scope(self, service, store):
        store.add(make_order())
        with pytest.raises(ResourceNotFoundException):
            await service.apply_update(TENANT, "wo-1", {"notes": "x"}, plant_id="plant-9")

    async def test_tenant_scope(self, service, store):
        store.add(make_order())
        with pytest.raises(ResourceNotFoundException):
            await service.apply_update("globex", "wo-1", {"notes": "x"})

    async def test_bad_timestamp_writes_nothing(self, service, store):
        store.add(make_order())
        with pytest.raises(ValidationException) as exc:
            await service.apply_update(TENANT, "wo-1", {"status": "in_analysis", "scheduled_at": "tomorrow"})
        assert "scheduled_at" in exc.value.message
        assert store.writes == 0
        assert store.orders[(TENANT, "wo-1")].status == S.OPEN

    async def test_unknown_status(self, service, store):
        store.add(make_order())
        with pytest.raises(ValidationException):
            await service.apply_update(TENANT, "wo-1", {"status": "on_hold"})

    async def test_repository_failure_propagates_and_rolls_back(self, make_service, store):
        store.add(make_order())
        repository = InMemoryWorkOrderRepository(store)
        repository.fail_on_patch = True
        service = make_service(repository=repository)

        with pytest.raises(RepositoryException):
            await walk(service, "wo-1", "in_analysis")
        assert store.rollbacks == 1
        assert store.orders[(TENANT, "wo-1")].status == S.OPEN


class TestBestEffortSideEffects:
    async def test_failing_collaborators_do_not_fail_the_update(
        self, service, store, cache_invalidator, search_indexer, notifier, call_log, caplog
    ):
        store.add(make_order())
        cache_invalidator.fail = True
        search_indexer.fail = True

        with caplog.at_level(logging.WARNING):
            result = await walk(service, "wo-1", "in_analysis")
            await service.drain_side_effects()

        assert result.order.status == S.IN_ANALYSIS
        assert call_log.calls == ["cache", "search", "notify"]
        assert notifier.kinds() == ["status_changed"]
        failed = [r.collaborator for r in caplog.records if hasattr(r, "collaborator")]
        assert failed == ["cache_invalidator", "search_indexer"]

    async def test_failing_notifier_still_commits(self, service, store, notifier):
        store.add(make_order())
        notifier.fail = True
        await walk(service, "wo-1", "in_analysis")
        await service.drain_side_effects()
        assert store.orders[(TENANT, "wo-1")].status == S.IN_ANALYSIS

    async def test_overdue_resume_notifies(self, service, store, clock, notifier):
        store.add(make_order(status=S.IN_EXECUTION, started_at=T0, sla_exclude_pause=False))
        await walk(service, "wo-1", "paused")
        clock.advance(hours=30)
        await walk(service, "wo-1", "in_execution")
        await service.drain_side_effects()

        assert notifier.kinds()[-2:] == ["status_changed", "sla_overdue"]

    async def test_resume_within_sla_does_not_alert(self, service, in_execution, clock, notifier):
        await walk(service, "wo-1", "paused")
        clock.advance(hours=30)
        await walk(service, "wo-1", "in_execution")
        await service.drain_side_effects()

        assert "sla_overdue" not in notifier.kinds()


class TestPatchNormalization:
    async def test_immutable_fields_are_ignored(self, service, store):
        store.add(make_order())
        result = await service.apply_update(TENANT, "wo-1", {
            "priority": "low",
            "tenant_id": "globex",
            "sla_paused_ms": 0,
            "sla_deadline": "2030-01-01T00:00:00Z",
            "notes": "checked",
        })
        order = result.order
        assert order.priority.value == "high"
        assert order.tenant_id == TENANT
        assert order.sla_deadline == T0 + timedelta(hours=24)
        assert order.notes == "checked"

    async def test_blank_values_clear(self, service, store):
        store.add(make_order(notes="old", scheduled_at=T0))
        result = await service.apply_update(TENANT, "wo-1", {"notes": "   ", "scheduled_at": ""})
        assert result.order.notes is None
        assert result.order.scheduled_at is None

    async def test_updated_at_moves(self, service, store, clock):
        store.add(make_order())
        clock.advance(minutes=3)
        result = await service.apply_update(TENANT, "wo-1", {"notes": "x"})
        assert result.order.updated_at == clock.now

    async def test_include_sla(self, service, in_execution, clock):
        clock.advance(hours=1)
        result = await service.apply_update(TENANT, "wo-1", {"notes": "x"}, include_sla=True)
        assert result.sla.remaining_ms == 23 * HOUR_MS
        assert (await service.apply_update(TENANT, "wo-1", {"notes": "y"})).sla is None


class TestDowntime:
    async def test_minutes_are_computed(self, service, store):
        store.add(make_order())
        result = await service.apply_update(TENANT, "wo-1", {
            "downtime_started_at": "2024-03-04T10:00:00Z",
            "downtime_ended_at": "2024-03-04T11:30:29Z",
        })
        assert result.order.downtime_minutes == 90

    async def test_end_merges_with_stored_start(self, service, store):
        store.add(make_order(downtime_started_at=T0))
        result = await service.apply_update(TENANT, "wo-1", {"downtime_ended_at": T0 + timedelta(minutes=45)})
        assert result.order.downtime_minutes == 45

    async def test_clearing_both(self, service, store):
        store.add(make_order(
            downtime_started_at=T0, downtime_ended_at=T0 + timedelta(hours=1), downtime_minutes=60
        ))
        result = await service.apply_update(
            TENANT, "wo-1", {"downtime_started_at": None, "downtime_ended_at": None}
        )
        assert result.order.downtime_minutes is None

    async def test_half_open_range_is_rejected(self, service, store):
        store.add(make_order())
        with pytest.raises(ValidationException):
            await service.apply_update(TENANT, "wo-1", {"downtime_started_at": "2024-03-04T10:00:00Z"})

    async def test_end_before_start_is_rejected(self, service, store):
        store.add(make_order())
        with pytest.raises(ValidationException):
            await service.apply_update(TENANT, "wo-1", {
                "downtime_started_at": "2024-03-04T10:00:00Z",
                "downtime_ended_at": "2024-03-04T09:00:00Z",
            })


class TestTransitionReasons:
    @pytest.fixture
    def strict(self, make_service):
        return make_service(require_transition_reasons=True)

    async def test_pause_requires_reason(self, strict, in_execution, store):
        with pytest.raises(ValidationException) as exc:
            await strict.apply_update(TENANT, "wo-1", {"status": "paused", "pause_reason": " ab "})
        assert exc.value.details == {"field": "pause_reason"}
        assert store.orders[(TENANT, "wo-1")].status == S.IN_EXECUTION

    async def test_pause_with_reason(self, strict, in_execution):
        result = await strict.apply_update(
            TENANT, "wo-1", {"status": "paused", "pause_reason": "waiting for parts"}
        )
        assert result.order.pause_reason == "waiting for parts"

    async def test_cancel_requires_reason(self, strict, store):
        store.add(make_order())
        with pytest.raises(ValidationException):
            await strict.apply_update(TENANT, "wo-1", {"status": "cancelled"})

    async def test_reasons_optional_by_default(self, service, in_execution):
        result = await service.apply_update(TENANT, "wo-1", {"status": "paused"})
        assert result.order.pause_reason is None


class TestRead:
    async def test_get_returns_snapshot(self, service, in_execution, clock):
        clock.advance(hours=2)
        order, snapshot = await service.get_work_order(TENANT, "wo-1", PLANT)
        assert order.id == "wo-1"
        assert snapshot.remaining_ms == 22 * HOUR_MS
        assert snapshot.status_aging_ms == 2 * HOUR_MS

    async def test_get_missing(self, service):
        with pytest.raises(ResourceNotFoundException):
            await service.get_work_order(TENANT, "nope")
