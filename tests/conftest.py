"""
Shared pytest fixtures: fake appointment sources and a fresh cache per test.
"""

import asyncio
from typing import List

import pytest

from carebook.cache import AppointmentCache, set_cache
from carebook.models import Appointment, AppointmentSnapshot


def make_snapshot(*ids: str) -> AppointmentSnapshot:
    return AppointmentSnapshot(
        upcoming=tuple(
            Appointment(id=i, doctor_name=f"Dr. {i.upper()}", specialty="Cardiology", date="2024-05-01", time="10:00")
            for i in ids
        )
    )


async def settle(rounds: int = 10) -> None:
    """Let every ready task run a few steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeSource:
    """Returns (or raises) the queued results in order; the last one repeats."""

    def __init__(self, *results):
        self.calls = 0
        self._results: List = list(results) or [make_snapshot()]
        self.profile = {"emp_data": {"name": "Asha Patel"}, "image": "https://img/asha.png"}
        self.doctors = []

    async def fetch(self):
        self.calls += 1
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_profile(self):
        if isinstance(self.profile, Exception):
            raise self.profile
        return self.profile

    async def fetch_doctors(self):
        if isinstance(self.doctors, Exception):
            raise self.doctors
        return self.doctors


class GatedSource:
    """Each fetch() blocks on its own future until the test resolves it."""

    def __init__(self):
        self.calls = 0
        self.pending: List[asyncio.Future] = []

    async def fetch(self):
        self.calls += 1
        fut = asyncio.get_running_loop().create_future()
        self.pending.append(fut)
        return await fut


@pytest.fixture
def fake_source():
    return FakeSource(make_snapshot("a1"))


@pytest.fixture
def gated_source():
    return GatedSource()


@pytest.fixture
def cache(fake_source):
    return AppointmentCache(fake_source)


@pytest.fixture
def gated_cache(gated_source):
    return AppointmentCache(gated_source)


@pytest.fixture(autouse=True)
def reset_process_cache():
    yield
    set_cache(None)
