"""Tests for aggregate count recomputation and the housekeeping guards."""

import asyncio
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio

from alarm_engine.config import AlarmServiceConfig
from alarm_engine.exceptions import StorageError
from alarm_engine.models import AlarmRecord
from alarm_engine.service import AlarmService
from alarm_engine.storage import MemoryProvider


def _add(service, alarm_class, *, closed=False, acked=False, ack_required=True):
    record = AlarmRecord(
        uuid=uuid4(),
        alarm_class=alarm_class.handle,
        created_time=datetime.now() - timedelta(minutes=5),
        ack_required=ack_required,
    )
    service.provider.add_record(record)
    if acked:
        service.provider.acknowledge(record.uuid, "ops")
    if closed:
        service.provider.return_to_normal(record.uuid)
    return record


@pytest_asyncio.fixture
async def service():
    svc = AlarmService(
        AlarmServiceConfig(housekeeping_interval_seconds=3600), MemoryProvider()
    )
    await svc.start()
    yield svc
    await svc.stop()


class TestUpdateCounts:
    @pytest.mark.asyncio
    async def test_per_class_and_system_totals(self, service):
        a = service.add_alarm_class("A")
        b = service.add_alarm_class("B")
        _add(service, a)
        _add(service, a, acked=True)
        _add(service, a, acked=True, closed=True)
        _add(service, b, closed=True, ack_required=False)
        _add(service, b, closed=True, ack_required=False)

        assert await service.update_counts(force=True) is True

        assert (a.counts.total, a.counts.open, a.counts.unacked) == (3, 2, 1)
        assert a.counts.in_alarm == 2
        assert (b.counts.total, b.counts.open, b.counts.unacked) == (2, 0, 0)
        assert service.counts.total == a.counts.total + b.counts.total
        assert service.counts.open == a.counts.open + b.counts.open
        assert service.counts.unacked == a.counts.unacked + b.counts.unacked
        assert service.counts.in_alarm == a.counts.in_alarm + b.counts.in_alarm

    @pytest.mark.asyncio
    async def test_not_dirty_is_noop(self, service):
        assert not service.is_dirty
        assert await service.update_counts() is False

    @pytest.mark.asyncio
    async def test_mutation_marks_dirty(self, service):
        plant = service.add_alarm_class("Plant")
        watch = plant.add_watch("/pump")
        watch.update(True)
        assert service.is_dirty
        assert await service.update_counts() is True
        assert not service.is_dirty
        assert plant.counts.open == 1

    @pytest.mark.asyncio
    async def test_concurrent_recompute_collapses(self, service):
        service._updating.acquire()
        try:
            assert await service.update_counts(force=True) is False
        finally:
            service._updating.release()

    @pytest.mark.asyncio
    async def test_large_scan_yields(self, service):
        plant = service.add_alarm_class("Plant")
        for _ in range(250):
            _add(service, plant)

        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0)

        task = asyncio.create_task(ticker())
        await asyncio.sleep(0)
        before = ticks
        await service.update_counts(force=True)
        task.cancel()

        assert plant.counts.total == 250
        assert ticks > before

    @pytest.mark.asyncio
    async def test_failure_releases_guard_and_stays_dirty(self, service, monkeypatch):
        def broken(*args, **kwargs):
            raise StorageError("disk gone")

        monkeypatch.setattr(service.provider, "query_alarms", broken)
        assert await service.update_counts(force=True) is False
        assert service.is_dirty
        assert not service._updating.locked()


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_execute_refreshes_dirty_counts(self, service):
        plant = service.add_alarm_class("Plant")
        _add(service, plant)
        service.mark_dirty()
        assert await service.execute() is True
        assert plant.counts.total == 1

    @pytest.mark.asyncio
    async def test_concurrent_execute_is_noop(self, service):
        service._executing.acquire()
        try:
            assert await service.execute() is False
        finally:
            service._executing.release()

    @pytest.mark.asyncio
    async def test_class_failure_does_not_stop_pass(self, service, monkeypatch):
        broken = service.add_alarm_class("Broken")
        healthy = service.add_alarm_class("Healthy")
        _add(service, healthy)

        def fail():
            raise RuntimeError("boom")

        monkeypatch.setattr(broken, "execute", fail)
        service.mark_dirty()
        assert await service.execute() is True
        assert healthy.counts.total == 1
        assert not service._executing.locked()

    @pytest.mark.asyncio
    async def test_periodic_task_runs(self):
        svc = AlarmService(
            AlarmServiceConfig(housekeeping_interval_seconds=0.01), MemoryProvider()
        )
        await svc.start()
        plant = svc.add_alarm_class("Plant")
        _add(svc, plant)
        svc.mark_dirty()
        for _ in range(100):
            if plant.counts.total == 1:
                break
            await asyncio.sleep(0.01)
        assert plant.counts.total == 1
        assert svc.is_running
        await svc.stop()
        assert not svc.is_running
