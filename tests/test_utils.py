"""Tests for utility helpers."""

import asyncio
from datetime import datetime, timezone

import pytest

from core.utils import parse_timestamp, spawn


class TestParseTimestamp:
    def test_zulu_suffix(self):
        assert parse_timestamp("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_fractional_seconds(self):
        parsed = parse_timestamp("2024-05-01T10:00:00.123456Z")
        assert parsed.microsecond == 123456

    def test_offset_is_converted_to_utc(self):
        parsed = parse_timestamp("2024-05-01T12:00:00+02:00")
        assert parsed == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_naive_is_utc(self):
        assert parse_timestamp("2024-05-01T10:00:00").tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None


class TestSpawn:
    @pytest.mark.asyncio
    async def test_runs_on_loop(self):
        done = []

        async def work():
            done.append(True)

        task = spawn(work())
        await task

        assert done == [True]

    def test_without_loop_drops_coroutine(self):
        async def work():
            raise AssertionError("must not run")

        assert spawn(work()) is None

    @pytest.mark.asyncio
    async def test_task_is_kept_until_done(self):
        from core.utils.tasks import _background_tasks

        gate = asyncio.Event()
        task = spawn(gate.wait())
        assert task in _background_tasks

        gate.set()
        await task
        await asyncio.sleep(0)
        assert task not in _background_tasks
