import asyncio
import json

import httpx
import pytest
import respx

from gateway_library.background_refresher import BackgroundRefresher
from gateway_library.defaults import CLIENT_ID, TOKEN_ENDPOINT
from gateway_library.token_manager import TokenRefresher
from gateway_library.types import (
    RefreshPermanentError,
    RefreshSuccess,
    RefreshTransientError,
    now_ms,
)

from conftest import make_record, store_with


def _refresher(store, events, **kwargs) -> TokenRefresher:
    kwargs.setdefault("sweep_delay_seconds", 0)
    return TokenRefresher(store, events=events, **kwargs)


@pytest.mark.asyncio
async def test_refresh_posts_refresh_grant_and_parses_success(store, events):
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(
                200,
                json={
                    "access_token": "sk-ant-oat01-new",
                    "refresh_token": "sk-ant-ort01-new",
                    "expires_in": 28800,
                },
            )
        )
        outcome = await refresher.refresh("sk-ant-ort01-old")

    assert outcome == RefreshSuccess(
        access_token="sk-ant-oat01-new", refresh_token="sk-ant-ort01-new", expires_in=28800
    )
    body = json.loads(route.calls.last.request.content)
    assert body == {
        "grant_type": "refresh_token",
        "refresh_token": "sk-ant-ort01-old",
        "client_id": CLIENT_ID,
    }


@pytest.mark.asyncio
async def test_missing_expires_in_defaults_to_one_hour(store, events):
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(200, json={"access_token": "a"})
        )
        outcome = await refresher.refresh("r")

    assert outcome == RefreshSuccess(access_token="a", refresh_token=None, expires_in=3600)


@pytest.mark.asyncio
async def test_concurrent_refreshes_of_same_token_share_one_call(store, events):
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(
                200, json={"access_token": "shared", "expires_in": 600}
            )
        )
        outcomes = await asyncio.gather(*[refresher.refresh("same-token") for _ in range(10)])

    assert route.call_count == 1
    assert all(o == outcomes[0] for o in outcomes)
    assert isinstance(outcomes[0], RefreshSuccess)
    assert refresher.inflight_count == 0
    assert events.count("refresh_deduplicated") == 9


@pytest.mark.asyncio
async def test_different_tokens_refresh_independently(store, events):
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(200, json={"access_token": "x", "expires_in": 60})
        )
        await asyncio.gather(refresher.refresh("token-a"), refresher.refresh("token-b"))

    assert route.call_count == 2
    assert refresher.inflight_count == 0


@pytest.mark.asyncio
async def test_registry_is_cleared_after_failure(store, events):
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(side_effect=httpx.ConnectError("refused"))
        outcomes = await asyncio.gather(*[refresher.refresh("t") for _ in range(3)])

    assert all(isinstance(o, RefreshTransientError) for o in outcomes)
    assert refresher.inflight_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "Refresh token revoked"}),
        httpx.Response(401, text="unauthorized"),
        httpx.Response(403, json={"error": {"type": "permission_error", "message": "nope"}}),
        httpx.Response(500, json={"error": "invalid_grant"}),
    ],
)
async def test_rejections_are_permanent(response, store, events):
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(return_value=response)
        outcome = await refresher.refresh("r")

    assert isinstance(outcome, RefreshPermanentError)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mock_kwargs",
    [
        {"return_value": httpx.Response(500, text="upstream exploded")},
        {"return_value": httpx.Response(429, json={"error": "rate_limited"})},
        {"return_value": httpx.Response(502, text="bad gateway")},
        {"return_value": httpx.Response(200, json={"error": "invalid_grant"})},
        {"return_value": httpx.Response(200, text="not json")},
        {"side_effect": httpx.ReadTimeout("slow")},
        {"side_effect": httpx.ConnectError("refused")},
    ],
)
async def test_transient_failures(mock_kwargs, store, events):
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(**mock_kwargs)
        outcome = await refresher.refresh("r")

    assert isinstance(outcome, RefreshTransientError)


@pytest.mark.asyncio
async def test_refresh_without_new_refresh_token_keeps_the_old_one(events):
    expired = make_record("alpha", expires_at=now_ms() - 1000, access_token="sk-ant-oat01-stale")
    store = store_with(expired)
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(200, json={"access_token": "sk-ant-oat01-fresh", "expires_in": 3600})
        )
        before = now_ms()
        report = await refresher.refresh_credential(expired)

    assert report.success
    stored = await store.get("alpha")
    assert stored.refresh_token == expired.refresh_token == "sk-ant-REDACTED"
    assert stored.access_token == "sk-ant-oat01-fresh"
    assert before + 3600 * 1000 <= stored.expires_at <= now_ms() + 3600 * 1000
    assert stored.last_refreshed is not None
    assert report.expires_at == stored.expires_at


@pytest.mark.asyncio
async def test_refresh_keeps_usage_counters_written_meanwhile(events):
    record = make_record("alpha", expires_at=now_ms() - 1000)
    store = store_with(record)
    refresher = _refresher(store, events)

    # usage recorded by a request after this record was read
    latest = await store.get("alpha")
    latest.use_count = 7
    await store.put(latest)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(200, json={"access_token": "new", "refresh_token": "r2"})
        )
        await refresher.refresh_credential(record)

    stored = await store.get("alpha")
    assert stored.use_count == 7
    assert stored.access_token == "new"
    assert stored.refresh_token == "r2"


@pytest.mark.asyncio
async def test_invalid_grant_disables_credential(events):
    record = make_record("beta", expires_at=now_ms() - 1000)
    store = store_with(record)
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(400, json={"error": "invalid_grant"})
        )
        report = await refresher.refresh_credential(record)

    assert isinstance(report.outcome, RefreshPermanentError)
    assert report.disabled
    assert record.enabled is False
    assert (await store.get("beta")).enabled is False
    assert events.count("refresh_permanent_error") == 1


@pytest.mark.asyncio
async def test_transient_failure_leaves_stored_record_untouched(events):
    record = make_record("gamma", expires_at=now_ms() - 1000)
    store = store_with(record)
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(return_value=httpx.Response(503))
        report = await refresher.refresh_credential(record)

    assert not report.success
    assert not report.disabled
    assert (await store.get("gamma")) == record


@pytest.mark.asyncio
async def test_record_without_refresh_token_is_permanent_without_http_call(events):
    record = make_record("delta", refresh_token="")
    store = store_with(record)
    refresher = _refresher(store, events)

    with respx.mock(assert_all_called=False) as mock_router:
        report = await refresher.refresh_credential(record)

    assert not mock_router.calls

    assert report.disabled
    assert (await store.get("delta")).enabled is False


@pytest.mark.asyncio
async def test_sweep_refreshes_only_expiring_enabled_records(events, monkeypatch):
    at = now_ms()
    store = store_with(
        make_record("expiring", expires_at=at + 5 * 60 * 1000),
        make_record("fresh", expires_at=at + 60 * 60 * 1000),
        make_record("disabled", expires_at=at - 1000, enabled=False),
        make_record("revoked", expires_at=0),
    )
    refresher = TokenRefresher(store, events=events, sweep_delay_seconds=1.0)

    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("gateway_library.token_manager.asyncio.sleep", fake_sleep)

    reports = []

    async def notifier(report):
        reports.append(report)

    def token_response(request):
        body = json.loads(request.content)
        if body["refresh_token"] == "sk-ant-REDACTED":
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "rotated", "expires_in": 3600})

    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(TOKEN_ENDPOINT).mock(side_effect=token_response)
        result = await refresher.sweep(notifier=notifier)

    assert route.call_count == 2
    assert result.to_dict() == {
        "checked": 4,
        "refreshed": 1,
        "failed": 1,
        "skipped": 2,
        "disabled": 1,
    }
    assert sorted(r.label for r in reports) == ["expiring", "revoked"]
    assert delays == [1.0, 1.0]
    assert (await store.get("expiring")).access_token == "rotated"
    assert (await store.get("fresh")).access_token == "sk-ant-REDACTED"
    assert (await store.get("revoked")).enabled is False


@pytest.mark.asyncio
async def test_forced_sweep_refreshes_every_enabled_record(events):
    store = store_with(
        make_record("one"),
        make_record("two"),
        make_record("off", enabled=False),
    )
    refresher = _refresher(store, events)

    async def broken_notifier(report):
        raise RuntimeError("notification channel down")

    with respx.mock(assert_all_called=True) as mock_router:
        route = mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(200, json={"access_token": "forced", "expires_in": 60})
        )
        result = await refresher.sweep(force=True, notifier=broken_notifier)

    assert route.call_count == 2
    assert result.refreshed == 2
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_background_refresher_runs_sweep_and_stops(events):
    store = store_with(make_record("soon", expires_at=now_ms() + 60 * 1000))
    refresher = _refresher(store, events)
    background = BackgroundRefresher(refresher, interval_seconds=3600)

    with respx.mock(assert_all_called=True) as mock_router:
        mock_router.post(TOKEN_ENDPOINT).mock(
            return_value=httpx.Response(200, json={"access_token": "bg", "expires_in": 3600})
        )
        result = await background.run_once()

        background.start()
        assert background.running
        await background.stop()

    assert not background.running
    assert result.refreshed == 1
    assert background.last_result is result
    assert (await store.get("soon")).access_token == "bg"
