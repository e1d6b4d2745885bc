"""Tests for the bounded trigger merger and the timer source."""

from __future__ import annotations

import asyncio

import pytest


def _trigger(destination: str, push: bool = True):
    from vault_backup.triggers.events import Trigger, TriggerSource

    source = TriggerSource.PUSH if push else TriggerSource.SCHEDULED
    return Trigger(source, destination)


# ---------------------------------------------------------------------------
# EventMerger
# ---------------------------------------------------------------------------


def test_capacity_must_be_positive():
    from vault_backup.triggers.merger import EventMerger

    with pytest.raises(ValueError):
        EventMerger(0)


def test_default_capacity_is_ten():
    from vault_backup.triggers.merger import EventMerger

    assert EventMerger().capacity == 10


@pytest.mark.asyncio
async def test_triggers_are_delivered_in_acceptance_order():
    from vault_backup.triggers.merger import EventMerger

    merger = EventMerger(capacity=5)
    await merger.put(_trigger("a"))
    await merger.put(_trigger("b", push=False))
    await merger.put(_trigger("c"))

    received = [(await merger.get()).destination for _ in range(3)]
    assert received == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_full_queue_blocks_producer_until_consumer_takes_one():
    from vault_backup.triggers.merger import EventMerger

    merger = EventMerger(capacity=2)
    await merger.put(_trigger("1"))
    await merger.put(_trigger("2"))
    assert merger.full()

    blocked = asyncio.create_task(merger.put(_trigger("3")))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    first = await merger.get()
    await asyncio.wait_for(blocked, timeout=1)

    assert first.destination == "1"
    assert merger.qsize() == 2


@pytest.mark.asyncio
async def test_no_trigger_is_dropped_under_burst():
    """More triggers than the capacity from two producers all arrive, each producer in order."""
    from vault_backup.triggers.merger import EventMerger

    merger = EventMerger(capacity=10)

    async def produce(prefix: str, count: int):
        for i in range(count):
            await merger.put(_trigger(f"{prefix}{i}"))

    producers = [
        asyncio.create_task(produce("push-", 20)),
        asyncio.create_task(produce("timer-", 15)),
    ]

    received = []
    for _ in range(35):
        received.append((await asyncio.wait_for(merger.get(), timeout=1)).destination)
        merger.task_done()
    await asyncio.gather(*producers)

    assert len(received) == 35
    assert merger.enqueued == merger.dequeued == 35
    assert [d for d in received if d.startswith("push-")] == [f"push-{i}" for i in range(20)]
    assert [d for d in received if d.startswith("timer-")] == [f"timer-{i}" for i in range(15)]


@pytest.mark.asyncio
async def test_join_waits_for_task_done():
    from vault_backup.triggers.merger import EventMerger

    merger = EventMerger()
    await merger.put(_trigger("a"))
    await merger.get()

    joiner = asyncio.create_task(merger.join())
    await asyncio.sleep(0.01)
    assert not joiner.done()

    merger.task_done()
    await asyncio.wait_for(joiner, timeout=1)


# ---------------------------------------------------------------------------
# Trigger / TimerSource
# ---------------------------------------------------------------------------


def test_trigger_describe_includes_event_type():
    from vault_backup.triggers.events import Trigger, TriggerSource

    assert Trigger(TriggerSource.PUSH, "f", "kv-v2/data-write").describe() == "vault event (kv-v2/data-write)"
    assert Trigger(TriggerSource.SCHEDULED, "f").describe() == "scheduled event"


@pytest.mark.asyncio
async def test_timer_fire_enqueues_scheduled_trigger_for_its_folder():
    from vault_backup.triggers.events import TriggerSource
    from vault_backup.triggers.merger import EventMerger
    from vault_backup.triggers.timer import TimerSource

    merger = EventMerger()
    timer = TimerSource(merger, "scheduled-folder")

    await timer.fire()
    await timer.fire()

    assert timer.fired == 2
    first = await merger.get()
    assert first.source is TriggerSource.SCHEDULED
    assert first.destination == "scheduled-folder"
    assert first.event_type is None
