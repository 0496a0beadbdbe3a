# tests/conftest.py

from __future__ import annotations

import pytest

from taskflow.manager import TaskManager
from taskflow.persistence import MemoryBackend

from .fakes import Clock, FakeSupabaseClient


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def manager(backend: MemoryBackend, clock: Clock) -> TaskManager:
    """TaskManager over an in-memory backend with a pinned clock"""
    m = TaskManager(backend, clock=clock)
    m.load()
    return m


@pytest.fixture()
def supabase_client() -> FakeSupabaseClient:
    return FakeSupabaseClient()
