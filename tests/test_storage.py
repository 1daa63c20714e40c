import json
from datetime import datetime, timezone

import pytest

from gateway_library.errors import PoolExhaustedError, StoreUnavailableError
from gateway_library.pool import CredentialPool
from gateway_library.storage import (
    CredentialStore,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    create_store,
)
from gateway_library.types import CredentialRecord

from conftest import make_record


@pytest.mark.asyncio
async def test_json_file_store_round_trip(tmp_path):
    path = tmp_path / "data" / "credentials.json"
    store = CredentialStore(JsonFileKeyValueStore(path))
    record = make_record("alpha", scopes=["user:inference"], subscription_type="max")

    assert await store.put(record)
    assert await store.get("alpha") == record

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["key:alpha"]["accessToken"] == record.access_token
    assert on_disk["key:alpha"]["subscriptionType"] == "max"

    # a fresh store over the same file sees the same data
    reopened = CredentialStore(JsonFileKeyValueStore(path))
    assert [r.label for r in await reopened.list_all()] == ["alpha"]

    assert await store.delete("alpha")
    assert await store.get("alpha") is None


@pytest.mark.asyncio
async def test_missing_file_is_an_empty_store(tmp_path):
    store = CredentialStore(JsonFileKeyValueStore(tmp_path / "absent.json"))

    assert await store.list_all() == []
    assert (await store.get_stats()).total_requests == 0


@pytest.mark.asyncio
async def test_malformed_entries_are_skipped(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text(
        json.dumps(
            {
                "key:good": make_record("good").to_dict(),
                "key:nolabel": {"accessToken": "x"},
                "key:notobject": "just a string",
                "key:numeric": {**make_record("numeric").to_dict(), "accessToken": 12345},
                "unrelated": {"label": "ignored"},
            }
        ),
        encoding="utf-8",
    )
    store = CredentialStore(JsonFileKeyValueStore(path))

    assert [r.label for r in await store.list_all()] == ["good"]
    assert await store.get("nolabel") is None
    assert await store.get("numeric") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [b"{not json", b'{"key:a": "\xff\xfe"}'],
    ids=["invalid-json", "invalid-utf8"],
)
async def test_corrupt_file_degrades_reads_and_fails_strict_writes(tmp_path, events, content):
    path = tmp_path / "credentials.json"
    path.write_bytes(content)
    store = CredentialStore(JsonFileKeyValueStore(path))

    assert await store.list_all() == []
    assert await store.get("alpha") is None
    assert (await store.get_stats()).total_requests == 0
    assert await store.put(make_record("alpha")) is False

    with pytest.raises(StoreUnavailableError):
        await store.put_strict(make_record("alpha"))
    with pytest.raises(StoreUnavailableError):
        await store.delete_strict("alpha")
    with pytest.raises(PoolExhaustedError):
        await CredentialPool(store, events=events).acquire()

    # the broken file is left for an operator to inspect
    assert path.read_bytes() == content


@pytest.mark.asyncio
async def test_stats_increment_and_day_rollover():
    store = CredentialStore(MemoryKeyValueStore())
    day_one = int(datetime(2026, 3, 1, 12, tzinfo=timezone.utc).timestamp() * 1000)
    day_two = int(datetime(2026, 3, 2, 0, 5, tzinfo=timezone.utc).timestamp() * 1000)

    await store.increment_stats(day_one)
    await store.increment_stats(day_one + 1000)
    stats = await store.get_stats()
    assert (stats.total_requests, stats.today, stats.today_requests) == (2, "2026-03-01", 2)

    await store.increment_stats(day_two)
    stats = await store.get_stats()
    assert (stats.total_requests, stats.today, stats.today_requests) == (3, "2026-03-02", 1)


@pytest.mark.asyncio
async def test_memory_store_isolates_stored_values():
    backend = MemoryKeyValueStore()
    value = {"label": "a", "scopes": ["x"]}
    await backend.put("key:a", value)

    value["scopes"].append("mutated")
    fetched = await backend.get("key:a")
    fetched["scopes"].append("also mutated")

    assert (await backend.get("key:a"))["scopes"] == ["x"]


def test_record_from_loose_json():
    record = CredentialRecord.from_dict(
        {
            "label": "  spaced  ",
            "accessToken": "sk-ant-oat01-x",
            "expiresAt": "1700000000000",
            "useCount": None,
            "scopes": "not-a-list",
        }
    )

    assert record.label == "spaced"
    assert record.expires_at == 1700000000000
    assert record.use_count == 0
    assert record.scopes == []
    assert record.enabled is True
    assert record.subscription_type == "unknown"
    assert record.uses_oauth_token


@pytest.mark.parametrize(
    "stored,expected",
    [
        ("false", False),
        ("False", False),
        ("0", False),
        ("true", True),
        ("yes", True),
        (0, False),
        (1, True),
        (False, False),
        (None, True),
    ],
)
def test_record_enabled_flag_from_loose_json(stored, expected):
    record = CredentialRecord.from_dict({"label": "k", "accessToken": "t", "enabled": stored})

    assert record.enabled is expected


def test_record_rejects_non_string_tokens():
    with pytest.raises(ValueError):
        CredentialRecord.from_dict({"label": "k", "accessToken": "t", "refreshToken": ["r"]})


def test_create_store_picks_backend(tmp_path):
    assert isinstance(create_store(tmp_path / "c.json").backend, JsonFileKeyValueStore)
    assert isinstance(create_store(None).backend, MemoryKeyValueStore)
