import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bonfire.domain.rendezvous import lockout, secrets
from bonfire.domain.rendezvous.errors import ErrorCode
from bonfire.domain.rendezvous.repo import BonfireRepository
from bonfire.domain.rendezvous.schemas import BonfireCreateRequest
from bonfire.domain.rendezvous.service import BonfireService
from bonfire.domain.rendezvous.validator import JoinValidator
from bonfire.infra.auth import AuthenticatedUser

T0 = datetime(2026, 3, 14, 10, 0, 0, tzinfo=timezone.utc)
OWNER = AuthenticatedUser(id="owner")


async def _create(pin=None, **overrides):
    payload = BonfireCreateRequest(
        name="Quad fire",
        latitude=45.5048,
        longitude=-73.5772,
        pin=pin,
        **overrides,
    )
    return await BonfireService().create_bonfire(OWNER, payload, now=T0)


@pytest.mark.asyncio
async def test_secret_rotation_scenario():
    summary = await _create()
    s0 = summary.current_secret_code
    validator = JoinValidator()

    ok = await validator.validate_join(summary.id, "u1", s0, now=T0 + timedelta(minutes=4, seconds=59))
    assert ok.ok

    still_ok = await validator.validate_join(summary.id, "u2", s0, now=T0 + timedelta(minutes=7))
    assert still_ok.ok

    late = await validator.validate_join(summary.id, "u3", s0, now=T0 + timedelta(minutes=10, seconds=1))
    assert not late.ok
    assert late.rejection.code is ErrorCode.INVALID_SECRET


@pytest.mark.asyncio
async def test_five_wrong_pins_lock_out_even_the_correct_pin():
    summary = await _create(pin="1234")
    code = summary.current_secret_code
    validator = JoinValidator()

    for _ in range(5):
        result = await validator.validate_join(summary.id, "u1", code, "0000", now=T0)
        assert result.rejection.code is ErrorCode.INVALID_PIN

    locked = await validator.validate_join(summary.id, "u1", code, "1234", now=T0)
    assert not locked.ok
    assert locked.rejection.code is ErrorCode.RATE_LIMITED
    assert locked.rejection.retry_after == T0 + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_lockout_expires_after_fifteen_minutes():
    summary = await _create(pin="1234")
    validator = JoinValidator()
    for _ in range(5):
        await validator.validate_join(summary.id, "u1", summary.current_secret_code, "0000", now=T0)

    later = T0 + timedelta(minutes=15)
    fresh_code = secrets.current_secret(summary.id, later).secret
    result = await validator.validate_join(summary.id, "u1", fresh_code, "1234", now=later)
    assert result.ok


@pytest.mark.asyncio
async def test_correct_pin_resets_failure_count():
    summary = await _create(pin="1234")
    code = summary.current_secret_code
    validator = JoinValidator()
    for _ in range(4):
        await validator.validate_join(summary.id, "u1", code, "0000", now=T0)
    assert (await validator.validate_join(summary.id, "u1", code, "1234", now=T0)).ok
    state = await lockout.get_state(summary.id, "u1")
    assert state.failures == 0

    for _ in range(4):
        result = await validator.validate_join(summary.id, "u1", code, "0000", now=T0)
        assert result.rejection.code is ErrorCode.INVALID_PIN


@pytest.mark.asyncio
async def test_lockout_is_per_user():
    summary = await _create(pin="1234")
    code = summary.current_secret_code
    validator = JoinValidator()
    for _ in range(5):
        await validator.validate_join(summary.id, "u1", code, "0000", now=T0)
    assert (await validator.validate_join(summary.id, "u2", code, "1234", now=T0)).ok


@pytest.mark.asyncio
async def test_missing_pin_counts_as_failure():
    summary = await _create(pin="1234")
    result = await JoinValidator().validate_join(summary.id, "u1", summary.current_secret_code, None, now=T0)
    assert result.rejection.code is ErrorCode.INVALID_PIN
    assert (await lockout.get_state(summary.id, "u1")).failures == 1


@pytest.mark.asyncio
async def test_wrong_secret_does_not_count_toward_lockout():
    summary = await _create(pin="1234")
    validator = JoinValidator()
    for _ in range(6):
        result = await validator.validate_join(summary.id, "u1", "NOPE", "0000", now=T0)
        assert result.rejection.code is ErrorCode.INVALID_SECRET
    assert (await lockout.get_state(summary.id, "u1")).failures == 0


@pytest.mark.asyncio
async def test_join_twice_is_idempotent():
    summary = await _create()
    validator = JoinValidator()
    first = await validator.validate_join(summary.id, "u1", summary.current_secret_code, now=T0)
    second = await validator.validate_join(summary.id, "u1", summary.current_secret_code, now=T0)
    assert first.ok and not first.already_member
    assert second.ok and second.already_member
    participants = await BonfireRepository().list_participants(summary.id)
    assert sorted(p.user_id for p in participants) == ["owner", "u1"]


@pytest.mark.asyncio
async def test_expired_or_unknown_bonfire_is_not_found():
    summary = await _create(expiry_hours=1)
    validator = JoinValidator()
    after = T0 + timedelta(hours=1)
    code = secrets.current_secret(summary.id, after).secret
    expired = await validator.validate_join(summary.id, "u1", code, now=after)
    assert expired.rejection.code is ErrorCode.NOT_FOUND

    missing = await validator.validate_join("missing", "u1", "ABC", now=T0)
    assert missing.rejection.code is ErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_concurrent_wrong_pins_check_at_most_five():
    summary = await _create(pin="1234")
    code = summary.current_secret_code
    validator = JoinValidator()

    results = await asyncio.gather(
        *(validator.validate_join(summary.id, "u1", code, "0000", now=T0) for _ in range(20))
    )

    codes = [result.rejection.code for result in results]
    assert codes.count(ErrorCode.INVALID_PIN) == 5
    assert codes.count(ErrorCode.RATE_LIMITED) == 15

    after = await validator.validate_join(summary.id, "u1", code, "1234", now=T0)
    assert after.rejection.code is ErrorCode.RATE_LIMITED
    assert after.rejection.retry_after == T0 + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_clearing_failures_leaves_an_engaged_lock():
    summary = await _create(pin="1234")
    code = summary.current_secret_code
    validator = JoinValidator()
    for _ in range(5):
        await validator.validate_join(summary.id, "u1", code, "0000", now=T0)

    await lockout.clear(summary.id, "u1")

    assert (await lockout.get_state(summary.id, "u1")).is_locked(T0)


@pytest.mark.asyncio
async def test_concurrent_joins_create_one_participant():
    summary = await _create()
    code = summary.current_secret_code
    validator = JoinValidator()

    results = await asyncio.gather(*(validator.validate_join(summary.id, "u1", code, now=T0) for _ in range(10)))

    assert all(result.ok for result in results)
    assert sum(1 for result in results if not result.already_member) == 1
    participants = await BonfireRepository().list_participants(summary.id)
    assert [p.user_id for p in participants].count("u1") == 1
