"""Shared fixtures: a frozen clock, isolated settings and a memory-backed engine."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from twofactor.auth import base32, totp
from twofactor.config import Settings
from twofactor.engine import TwoFactorEngine
from twofactor.store import MemorySecretStore

# 2023-11-14T22:13:45Z, halfway through a 30s step
NOW = 1_700_000_025.0


class FakeClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def store() -> MemorySecretStore:
    return MemorySecretStore()


@pytest.fixture
def engine(store, config, clock) -> TwoFactorEngine:
    return TwoFactorEngine(store, config=config, clock=clock)


@pytest.fixture
def code_for(clock) -> Callable[..., str]:
    """The code an authenticator app would show ``offset`` steps from the fake now."""

    def _code(secret_b32: str, offset: int = 0) -> str:
        return totp.generate(base32.decode(secret_b32), totp.current_step(clock()) + offset)

    return _code
