import random
from collections import Counter

import pytest

from gateway_library.errors import PoolExhaustedError
from gateway_library.pool import (
    CredentialPool,
    PoolSettings,
    is_eligible,
    score_credential,
    select_credential,
)
from gateway_library.types import iso_from_ms, now_ms

from conftest import make_record, store_with


AT = now_ms()
USED = iso_from_ms(AT - 60 * 60 * 1000)


def test_selection_never_goes_beyond_third_best():
    records = [
        make_record(f"k{i}", use_count=i * 10, last_used=USED, expires_at=AT + 3600_000)
        for i in range(5)
    ]
    rng = random.Random(7)

    picks = Counter(select_credential(records, AT, rng=rng).label for _ in range(500))

    assert set(picks) == {"k0", "k1", "k2"}


def test_selection_with_fewer_than_three_candidates():
    records = [make_record("only", expires_at=AT + 3600_000)]
    assert select_credential(records, AT, rng=random.Random(1)).label == "only"


def test_top_n_is_configurable():
    records = [
        make_record(f"k{i}", use_count=i, last_used=USED, expires_at=AT + 3600_000)
        for i in range(4)
    ]
    settings = PoolSettings(top_n=1)

    for seed in range(20):
        assert select_credential(records, AT, settings, random.Random(seed)).label == "k0"


def test_no_eligible_credentials_returns_none():
    records = [
        make_record("off", enabled=False),
        make_record("empty", access_token=""),
        make_record("expiring", expires_at=AT + 60_000),
    ]
    assert select_credential(records, AT) is None
    assert select_credential([], AT) is None


@pytest.mark.parametrize(
    "overrides,eligible",
    [
        ({}, True),
        ({"enabled": False}, False),
        ({"access_token": ""}, False),
        ({"expires_at": AT + 2 * 60 * 1000}, False),
        ({"expires_at": AT + 2 * 60 * 1000 + 1}, True),
        ({"expires_at": 0}, False),
    ],
)
def test_eligibility(overrides, eligible):
    assert is_eligible(make_record("k", **overrides), AT, PoolSettings()) is eligible


def test_score_components():
    settings = PoolSettings()

    fresh = make_record("fresh")
    assert score_credential(fresh, AT, settings) == -5

    busy = make_record("busy", use_count=12, error_count=2, last_used=USED)
    assert score_credential(busy, AT, settings) == 12 + 20

    recent = make_record(
        "recent",
        use_count=3,
        error_count=1,
        last_used=USED,
        last_error_at=iso_from_ms(AT - 60 * 1000),
    )
    assert score_credential(recent, AT, settings) == 3 + 10 + 50

    old_error = make_record(
        "old", error_count=1, last_used=USED, last_error_at=iso_from_ms(AT - 10 * 60 * 1000)
    )
    assert score_credential(old_error, AT, settings) == 10


def test_recent_error_pushes_credential_out_of_rotation():
    records = [
        make_record("flaky", last_used=USED, last_error_at=iso_from_ms(AT - 1000), error_count=1),
        make_record("a", use_count=5, last_used=USED),
        make_record("b", use_count=6, last_used=USED),
        make_record("c", use_count=7, last_used=USED),
    ]
    rng = random.Random(3)

    picks = {select_credential(records, AT, rng=rng).label for _ in range(200)}

    assert picks == {"a", "b", "c"}


@pytest.mark.asyncio
async def test_acquire_raises_when_pool_is_empty(events):
    pool = CredentialPool(store_with(make_record("off", enabled=False)), events=events)

    with pytest.raises(PoolExhaustedError) as exc_info:
        await pool.acquire()

    assert exc_info.value.status_code == 503
    assert events.count("pool_exhausted") == 1


@pytest.mark.asyncio
async def test_acquire_and_eligible(events):
    store = store_with(make_record("a"), make_record("b", enabled=False))
    pool = CredentialPool(store, rng=random.Random(0), events=events)

    assert [r.label for r in await pool.eligible()] == ["a"]
    assert (await pool.acquire()).label == "a"
    assert events.count("credential_selected") == 1


@pytest.mark.asyncio
async def test_record_usage_success_and_failure(events):
    store = store_with(make_record("a"))
    pool = CredentialPool(store, events=events)

    await pool.record_usage("a", success=True, at_ms=AT)
    await pool.record_usage("a", success=False, at_ms=AT + 1000)

    record = await store.get("a")
    assert record.use_count == 2
    assert record.error_count == 1
    assert record.last_used == iso_from_ms(AT + 1000)
    assert record.last_error_at == iso_from_ms(AT + 1000)
    assert events.count("upstream_failure") == 1

    stats = await store.get_stats()
    assert stats.total_requests == 2
    assert stats.today_requests == 2


@pytest.mark.asyncio
async def test_record_usage_for_removed_label_still_counts_request(events):
    store = store_with()
    pool = CredentialPool(store, events=events)

    await pool.record_usage("gone", success=True)

    assert await store.get("gone") is None
    assert (await store.get_stats()).total_requests == 1


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("POOL_TOP_N", "5")
    monkeypatch.setenv("POOL_EXPIRY_BUFFER_SECONDS", "30")
    monkeypatch.setenv("POOL_ERROR_WEIGHT", "not-a-number")

    settings = PoolSettings.from_env()

    assert settings.top_n == 5
    assert settings.buffer_ms == 30_000
    assert settings.error_weight == 10
