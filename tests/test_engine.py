"""Tests for the enrollment / verification state machine."""

from __future__ import annotations

import asyncio

import pytest

from twofactor.auth import base32, totp
from twofactor.config import Settings
from twofactor.engine import TwoFactorEngine
from twofactor.errors import AlreadyEnabled, InvalidCode, NotEnabled, NotSetUp, StoreConflict, Unauthorized
from twofactor.models import SecretRecord


def _wrong_code(secret_b32: str, clock) -> str:
    """A 6-digit code that matches no step in the +-1 window."""
    secret = base32.decode(secret_b32)
    step = totp.current_step(clock())
    valid = {totp.generate(secret, step + offset) for offset in (-1, 0, 1)}
    for n in range(1_000_000):
        candidate = f"{n:06d}"
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable")


async def _enabled(engine: TwoFactorEngine, code_for, identity: str = "u1"):
    setup = await engine.begin_setup(identity, f"{identity}@x.com")
    await engine.confirm_enable(identity, code_for(setup.secret))
    return setup


# --- begin_setup ---


async def test_begin_setup(engine, store):
    setup = await engine.begin_setup("u1", "u1@x.com")
    assert len(base32.decode(setup.secret)) == 20
    assert len(setup.backup_codes) == 8
    assert setup.provisioning_uri.startswith("otpauth://totp/CampusMind:u1%40x.com?secret=" + setup.secret)
    assert setup.provisioning_uri.endswith("&issuer=CampusMind&algorithm=SHA1&digits=6&period=30")
    assert setup.qr_payload == setup.provisioning_uri

    record = await store.get("u1")
    assert record.enabled is False
    assert record.used_backup_codes == []


async def test_begin_setup_overwrites_pending(engine, store):
    first = await engine.begin_setup("u1", "u1@x.com")
    second = await engine.begin_setup("u1", "u1@x.com")
    assert first.secret != second.secret
    assert base32.encode((await store.get("u1")).shared_secret) == second.secret
    assert len(store) == 1


async def test_begin_setup_overwrites_enabled(engine, code_for):
    await _enabled(engine, code_for)
    await engine.begin_setup("u1", "u1@x.com")
    assert (await engine.status("u1")).enabled is False


async def test_begin_setup_uses_renderer(store, config, clock):
    class Renderer:
        def render(self, uri: str) -> str:
            return "rendered:" + uri

    engine = TwoFactorEngine(store, config=config, clock=clock, qr_renderer=Renderer())
    setup = await engine.begin_setup("u1", "u1@x.com")
    assert setup.qr_payload == "rendered:" + setup.provisioning_uri


async def test_issuer_from_config(store, clock):
    engine = TwoFactorEngine(store, config=Settings(_env_file=None, app_name="Campus Mind"), clock=clock)
    setup = await engine.begin_setup("u1", "u1@x.com")
    assert setup.provisioning_uri.startswith("otpauth://totp/Campus%20Mind:u1%40x.com?")
    assert "&issuer=Campus+Mind&" in setup.provisioning_uri


async def test_distinct_users_get_distinct_secrets(engine):
    a = await engine.begin_setup("a", "a@x.com")
    b = await engine.begin_setup("b", "b@x.com")
    assert a.secret != b.secret


# --- confirm_enable ---


async def test_happy_path(engine, code_for):
    setup = await engine.begin_setup("u1", "u1@x.com")
    result = await engine.confirm_enable("u1", code_for(setup.secret))
    assert result.success
    assert result.backup_codes == setup.backup_codes

    status = await engine.status("u1")
    assert status.enabled is True
    assert status.backup_codes_remaining == 8


@pytest.mark.parametrize("offset", [-1, 1])
async def test_enable_tolerates_clock_skew(engine, code_for, offset):
    setup = await engine.begin_setup("u1", "u1@x.com")
    await engine.confirm_enable("u1", code_for(setup.secret, offset))
    assert await engine.is_enabled("u1")


async def test_enable_without_setup(engine):
    with pytest.raises(NotSetUp):
        await engine.confirm_enable("u1", "123456")


async def test_enable_twice(engine, code_for):
    setup = await _enabled(engine, code_for)
    with pytest.raises(AlreadyEnabled):
        await engine.confirm_enable("u1", code_for(setup.secret))


async def test_enable_with_wrong_code(engine, clock):
    setup = await engine.begin_setup("u1", "u1@x.com")
    with pytest.raises(InvalidCode):
        await engine.confirm_enable("u1", _wrong_code(setup.secret, clock))
    assert not await engine.is_enabled("u1")


async def test_enable_with_stale_code(engine, code_for):
    setup = await engine.begin_setup("u1", "u1@x.com")
    with pytest.raises(InvalidCode):
        await engine.confirm_enable("u1", code_for(setup.secret, -3))


async def test_enable_rejects_backup_code(engine):
    setup = await engine.begin_setup("u1", "u1@x.com")
    with pytest.raises(InvalidCode):
        await engine.confirm_enable("u1", setup.backup_codes[0])


# --- verify ---


async def test_verify_passes_through_without_record(engine):
    result = await engine.verify("nobody", "000000")
    assert result.valid is True
    assert result.used_backup_code is False


async def test_verify_passes_through_while_pending(engine):
    await engine.begin_setup("u1", "u1@x.com")
    assert (await engine.verify("u1", "000000")).valid is True


async def test_verify_totp(engine, code_for, clock):
    setup = await _enabled(engine, code_for)
    clock.advance(30)
    result = await engine.verify("u1", code_for(setup.secret))
    assert result.valid is True
    assert result.used_backup_code is False


async def test_verify_wrong_code(engine, code_for, clock):
    setup = await _enabled(engine, code_for)
    assert (await engine.verify("u1", _wrong_code(setup.secret, clock))).valid is False


async def test_backup_code_recovery(engine, code_for):
    setup = await _enabled(engine, code_for)
    c3 = setup.backup_codes[3]

    first = await engine.verify("u1", c3)
    assert first.valid is True
    assert first.used_backup_code is True
    assert await engine.remaining_backup_codes("u1") == 7

    second = await engine.verify("u1", c3)
    assert second.valid is False
    assert await engine.remaining_backup_codes("u1") == 7


async def test_totp_codes_replay_within_window_by_default(engine, code_for):
    setup = await _enabled(engine, code_for)
    code = code_for(setup.secret)
    assert (await engine.verify("u1", code)).valid
    assert (await engine.verify("u1", code)).valid


async def test_concurrent_backup_code_use_has_one_winner(engine, code_for):
    setup = await _enabled(engine, code_for)
    code = setup.backup_codes[0]
    results = await asyncio.gather(*(engine.verify("u1", code) for _ in range(5)))
    assert sum(r.valid for r in results) == 1
    assert await engine.remaining_backup_codes("u1") == 7


async def test_concurrent_different_backup_codes_all_count(engine, code_for):
    setup = await _enabled(engine, code_for)
    results = await asyncio.gather(*(engine.verify("u1", c) for c in setup.backup_codes[:4]))
    assert all(r.valid and r.used_backup_code for r in results)
    assert await engine.remaining_backup_codes("u1") == 4


# --- replay protection ---


@pytest.fixture
def strict_engine(store, clock) -> TwoFactorEngine:
    return TwoFactorEngine(store, config=Settings(_env_file=None, reject_replayed_codes=True), clock=clock)


async def test_replayed_code_is_rejected(strict_engine, code_for, clock):
    setup = await _enabled(strict_engine, code_for)
    clock.advance(30)
    code = code_for(setup.secret)
    assert (await strict_engine.verify("u1", code)).valid
    assert not (await strict_engine.verify("u1", code)).valid


async def test_enable_code_cannot_be_reused(strict_engine, code_for):
    setup = await strict_engine.begin_setup("u1", "u1@x.com")
    code = code_for(setup.secret)
    await strict_engine.confirm_enable("u1", code)
    assert not (await strict_engine.verify("u1", code)).valid
    # Earlier steps are burned too
    assert not (await strict_engine.verify("u1", code_for(setup.secret, -1))).valid
    assert (await strict_engine.verify("u1", code_for(setup.secret, 1))).valid


# --- disable ---


async def test_disable_requires_proof(engine, code_for, clock, store):
    setup = await _enabled(engine, code_for)
    with pytest.raises(Unauthorized):
        await engine.disable("u1", _wrong_code(setup.secret, clock))
    assert await store.get("u1") is not None

    assert await engine.disable("u1", code_for(setup.secret))
    status = await engine.status("u1")
    assert status.enabled is False
    assert status.backup_codes_remaining == 0


async def test_disable_with_backup_code(engine, code_for, store):
    setup = await _enabled(engine, code_for)
    assert await engine.disable("u1", setup.backup_codes[0])
    assert await store.get("u1") is None


async def test_disable_keeps_a_setup_that_lands_midway(store, config, clock, code_for):
    restarted = []

    async def on_event(event_type, message, *, identity=None, context=None):
        # The user restarts enrollment right after the backup code is spent
        if event_type == "backup_code_used" and not restarted:
            restarted.append(await engine.begin_setup(identity, "u1@x.com"))

    engine = TwoFactorEngine(store, config=config, clock=clock, on_event=on_event)
    setup = await _enabled(engine, code_for)
    with pytest.raises(NotEnabled):
        await engine.disable("u1", setup.backup_codes[0])

    record = await store.get("u1")
    assert record is not None
    assert record.enabled is False
    assert base32.encode(record.shared_secret) == restarted[0].secret
    result = await engine.confirm_enable("u1", code_for(restarted[0].secret))
    assert result.backup_codes == restarted[0].backup_codes


async def test_disable_retries_with_spent_backup_code(store, config, clock, code_for):
    class RacingStore(type(store)):
        raced = False

        async def delete(self, identity, expected_version=None):
            if not self.raced:
                # Another request bumps the version first
                self.raced = True
                current = await self.get(identity)
                await self.compare_and_swap(identity, current, current.version)
            return await super().delete(identity, expected_version)

    racing = RacingStore()
    engine = TwoFactorEngine(racing, config=config, clock=clock)
    setup = await _enabled(engine, code_for)
    assert await engine.disable("u1", setup.backup_codes[0])
    assert await racing.get("u1") is None


async def test_pass_through_leaves_no_store_state(engine, store, code_for):
    for n in range(1000):
        assert (await engine.verify(f"user-{n}", "000000")).valid
        await engine.status(f"user-{n}")
    assert len(store) == 0
    assert store._locks == {}

    setup = await _enabled(engine, code_for)
    assert await engine.disable("u1", code_for(setup.secret))
    assert len(store) == 0
    assert store._locks == {}


async def test_disable_when_not_enabled(engine):
    with pytest.raises(NotEnabled):
        await engine.disable("u1", "000000")
    await engine.begin_setup("u1", "u1@x.com")
    with pytest.raises(NotEnabled):
        await engine.disable("u1", "000000")


# --- regenerate_backup_codes ---


async def test_regenerate_backup_codes(engine, code_for):
    setup = await _enabled(engine, code_for)
    await engine.verify("u1", setup.backup_codes[0])

    codes = await engine.regenerate_backup_codes("u1", code_for(setup.secret))
    assert len(codes) == 8
    assert not set(codes) & set(setup.backup_codes)
    assert await engine.remaining_backup_codes("u1") == 8

    # Old codes are dead, new ones work
    assert not (await engine.verify("u1", setup.backup_codes[1])).valid
    assert (await engine.verify("u1", codes[0])).used_backup_code


async def test_regenerate_rejects_backup_code(engine, code_for):
    setup = await _enabled(engine, code_for)
    with pytest.raises(InvalidCode):
        await engine.regenerate_backup_codes("u1", setup.backup_codes[0])
    assert await engine.remaining_backup_codes("u1") == 8


async def test_regenerate_when_not_enabled(engine):
    with pytest.raises(NotEnabled):
        await engine.regenerate_backup_codes("u1", "000000")


# --- status queries ---


async def test_status_without_record(engine):
    status = await engine.status("nobody")
    assert status.enabled is False
    assert status.backup_codes_remaining == 0


async def test_status_while_pending(engine):
    await engine.begin_setup("u1", "u1@x.com")
    status = await engine.status("u1")
    assert status.enabled is False
    assert status.backup_codes_remaining == 8


async def test_backup_code_count_warning(engine, code_for):
    setup = await _enabled(engine, code_for)
    count = await engine.backup_code_count("u1")
    assert (count.remaining, count.total, count.warning) == (8, 8, None)

    for code in setup.backup_codes[:6]:
        await engine.verify("u1", code)
    count = await engine.backup_code_count("u1")
    assert count.remaining == 2
    assert count.warning is not None


# --- events and conflicts ---


async def test_events_are_reported(store, config, clock, code_for):
    seen: list[tuple[str, str | None]] = []

    async def on_event(event_type, message, *, identity=None, context=None):
        seen.append((event_type, identity))

    engine = TwoFactorEngine(store, config=config, clock=clock, on_event=on_event)
    setup = await _enabled(engine, code_for)
    await engine.verify("u1", setup.backup_codes[0])
    await engine.verify("u1", setup.backup_codes[0])
    await engine.disable("u1", code_for(setup.secret))

    assert [event for event, _ in seen] == [
        "setup_started",
        "enabled",
        "backup_code_used",
        "verification_failed",
        "disabled",
    ]
    assert {identity for _, identity in seen} == {"u1"}


async def test_store_conflict_after_repeated_races(store, config, clock, code_for):
    class LosingStore(type(store)):
        async def compare_and_swap(self, identity, record, expected_version):
            return False

    losing = LosingStore()
    engine = TwoFactorEngine(losing, config=config, clock=clock)
    setup = await engine.begin_setup("u1", "u1@x.com")
    with pytest.raises(StoreConflict):
        await engine.confirm_enable("u1", code_for(setup.secret))


async def test_secret_record_left_intact_on_failure(engine, store, clock):
    setup = await engine.begin_setup("u1", "u1@x.com")
    before = await store.get("u1")
    with pytest.raises(InvalidCode):
        await engine.confirm_enable("u1", _wrong_code(setup.secret, clock))
    after = await store.get("u1")
    assert isinstance(after, SecretRecord)
    assert after.version == before.version
