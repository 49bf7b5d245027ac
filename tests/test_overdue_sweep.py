from datetime import timedelta

import pytest

from src.config import WorkOrderStatus as S
from src.workorders.application import SlaOverdueSweeper

from tests.conftest import T0, InMemoryWorkOrderRepository, make_order


@pytest.fixture
def sweeper(notifier, runner, clock):
    return SlaOverdueSweeper(notifier, renotify_after=timedelta(hours=6), runner=runner, clock=clock)


@pytest.fixture
def repository(store):
    return InMemoryWorkOrderRepository(store)


async def test_notifies_overdue_orders_once_per_window(sweeper, repository, store, clock, notifier):
    store.add(make_order(status=S.IN_EXECUTION))
    clock.advance(hours=25)

    first = await sweeper.sweep(repository)
    assert first["notifications_sent"] == 1
    assert notifier.kinds() == ["sla_overdue"]

    clock.advance(hours=1)
    second = await sweeper.sweep(repository)
    assert second == {"orders_evaluated": 1, "orders_overdue": 1, "notifications_sent": 0}

    clock.advance(hours=5)
    third = await sweeper.sweep(repository)
    assert third["notifications_sent"] == 1
    assert notifier.kinds() == ["sla_overdue", "sla_overdue"]


async def test_never_changes_status(sweeper, repository, store, clock):
    store.add(make_order(status=S.IN_ANALYSIS))
    clock.advance(hours=48)
    await sweeper.sweep(repository)
    assert store.orders[("acme", "wo-1")].status == S.IN_ANALYSIS
    assert store.writes == 0


async def test_paused_orders_with_excluded_pause_are_silent(sweeper, repository, store, clock, notifier):
    store.add(make_order(status=S.PAUSED, sla_pause_started_at=T0))
    store.add(make_order(id="wo-2", status=S.PAUSED, sla_exclude_pause=False))
    clock.advance(hours=30)

    summary = await sweeper.sweep(repository)

    assert summary["orders_overdue"] == 1
    assert [e.work_order_id for e in notifier.events] == ["wo-2"]


async def test_stored_pause_time_pushes_the_deadline(sweeper, repository, store, clock, notifier):
    store.add(make_order(status=S.IN_EXECUTION, sla_paused_ms=3 * 3_600_000))
    clock.advance(hours=26)

    summary = await sweeper.sweep(repository)

    assert summary == {"orders_evaluated": 1, "orders_overdue": 0, "notifications_sent": 0}
    assert notifier.events == []


async def test_final_orders_are_ignored(sweeper, repository, store, clock, notifier):
    store.add(make_order(status=S.CLOSED))
    store.add(make_order(id="wo-2", status=S.COMPLETED))
    clock.advance(hours=100)

    assert (await sweeper.sweep(repository))["orders_evaluated"] == 0


async def test_failed_notification_is_retried_next_sweep(sweeper, repository, store, clock, notifier):
    store.add(make_order(status=S.OPEN))
    clock.advance(hours=25)
    notifier.fail = True

    assert (await sweeper.sweep(repository))["notifications_sent"] == 0

    notifier.fail = False
    clock.advance(minutes=5)
    assert (await sweeper.sweep(repository))["notifications_sent"] == 1


async def test_pages_past_orders_that_are_not_really_overdue(repository, store, clock, notifier, runner):
    for i in range(4):
        store.add(make_order(id=f"paused-{i}", status=S.PAUSED, sla_deadline=T0, sla_pause_started_at=T0))
    for i in range(4):
        store.add(make_order(id=f"extended-{i}", status=S.IN_EXECUTION, sla_deadline=T0, sla_paused_ms=30 * 24 * 3_600_000))
    store.add(make_order(id="late", status=S.IN_EXECUTION))
    clock.advance(days=29)
    sweeper = SlaOverdueSweeper(notifier, runner=runner, clock=clock, batch_size=2)

    summary = await sweeper.sweep(repository)

    assert summary == {"orders_evaluated": 5, "orders_overdue": 1, "notifications_sent": 1}
    assert [e.work_order_id for e in notifier.events] == ["late"]
    assert store.overdue_queries == 3
