"""Tests for the rate-limited metadata client."""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest

from bookcache.api_caller import CredentialPool, MetadataClient
from bookcache.errors import MetadataRequestError, RateLimitError, TransientRequestError


def make_client(keys=("k1",), **overrides) -> MetadataClient:
    settings = {
        "api_keys": list(keys),
        "min_request_spacing": 0,
        "max_retries": 3,
        "initial_retry_delay": 0.001,
        "pause_seconds": 60,
    }
    settings.update(overrides)
    return MetadataClient(**settings)


class TestCredentialPool:
    def test_empty_pool_is_keyless(self):
        pool = CredentialPool([])
        assert pool.active is None
        assert pool.mark_exhausted() is False

    def test_rotation_and_wrap(self):
        pool = CredentialPool(["a", "b", "c"])
        assert pool.mark_exhausted() is True and pool.active == "b"
        assert pool.mark_exhausted() is True and pool.active == "c"
        assert pool.mark_exhausted() is False

        pool.wrap()

        assert pool.active == "a"
        assert pool.mark_exhausted() is True


class TestQueue:
    @pytest.mark.asyncio
    async def test_dispatches_in_submission_order(self):
        client = make_client()
        started = []

        def request(name, delay):
            async def call(credential):
                started.append(name)
                await asyncio.sleep(delay)
                return name
            return call

        results = await asyncio.gather(
            client.enqueue(request("A", 0.05)),
            client.enqueue(request("B", 0)),
            client.enqueue(request("C", 0.01)),
        )

        assert started == ["A", "B", "C"]
        assert results == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_spacing_measured_from_completion(self):
        client = make_client(min_request_spacing=0.1)
        spans = []

        async def call(credential):
            start = time.monotonic()
            await asyncio.sleep(0.02)
            spans.append((start, time.monotonic()))

        await asyncio.gather(client.enqueue(call), client.enqueue(call))

        (_, first_end), (second_start, _) = spans
        assert second_start - first_end >= 0.09

    @pytest.mark.asyncio
    async def test_inner_exception_reaches_caller(self):
        client = make_client()
        calls = []

        async def call(credential):
            calls.append(credential)
            raise MetadataRequestError("Client error 400", 400)

        with pytest.raises(MetadataRequestError):
            await client.enqueue(call)
        assert calls == ["k1"]

    @pytest.mark.asyncio
    async def test_close_cancels_running_and_queued_requests(self):
        client = make_client()
        started = asyncio.Event()

        async def slow(credential):
            started.set()
            await asyncio.sleep(10)

        running = asyncio.ensure_future(client.enqueue(slow))
        await started.wait()
        queued = asyncio.ensure_future(client.enqueue(slow))
        await asyncio.sleep(0)

        await client.close()

        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(running, 1)
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(queued, 1)


class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_429_rotates_to_next_credential_immediately(self):
        client = make_client(keys=("k1", "k2"))
        calls = []

        async def call(credential):
            calls.append(credential)
            if len(calls) == 1:
                raise RateLimitError()
            return "ok"

        assert await client.enqueue(call) == "ok"
        assert calls == ["k1", "k2"]

        async def follow_up(credential):
            calls.append(credential)
            return "ok"

        await client.enqueue(follow_up)
        assert calls[-1] == "k2"

    @pytest.mark.asyncio
    async def test_backs_off_then_wraps_when_all_credentials_exhausted(self):
        client = make_client(keys=("k1", "k2"))
        calls = []

        async def call(credential):
            calls.append(credential)
            if len(calls) <= 2:
                raise RateLimitError()
            return "ok"

        with patch("bookcache.api_caller.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await client.enqueue(call) == "ok"

        assert calls == ["k1", "k2", "k1"]
        sleep.assert_awaited_once_with(0.001)

    @pytest.mark.asyncio
    async def test_exhausted_retries_enter_pause(self):
        client = make_client(max_retries=2)
        calls = []

        async def call(credential):
            calls.append(credential)
            raise RateLimitError()

        assert await client.enqueue(call, empty="EMPTY") == "EMPTY"
        assert len(calls) == 3
        assert client.is_paused

        assert await client.enqueue(call, empty="EMPTY") == "EMPTY"
        assert len(calls) == 3


class TestTransientFailures:
    @pytest.mark.asyncio
    async def test_retries_with_backoff_then_propagates(self):
        client = make_client(max_retries=2, initial_retry_delay=0.01)
        calls = []

        async def call(credential):
            calls.append(credential)
            raise TransientRequestError("Server error 503", 503)

        with patch("bookcache.api_caller.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(TransientRequestError):
                await client.enqueue(call)

        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.01, 0.02]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        client = make_client()
        outcomes = [TransientRequestError("timeout"), "ok"]

        async def call(credential):
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert await client.enqueue(call) == "ok"


class TestSearchVolumes:
    @pytest.mark.asyncio
    async def test_returns_items_and_passes_credential(self):
        client = make_client(keys=("secret",))
        items = [{"id": "abc", "volumeInfo": {"title": "Dune"}}]

        with patch.object(client, "_get_json", new=AsyncMock(return_value={"items": items})) as get_json:
            assert await client.search_volumes('intitle:"Dune"', max_results=5) == items

        url, params, credential = get_json.await_args.args
        assert params["q"] == 'intitle:"Dune"'
        assert params["maxResults"] == 5
        assert credential == "secret"

    @pytest.mark.asyncio
    async def test_no_items_is_empty_list(self):
        client = make_client()
        with patch.object(client, "_get_json", new=AsyncMock(return_value={"totalItems": 0})):
            assert await client.search_volumes("nothing") == []

    @pytest.mark.asyncio
    async def test_paused_client_returns_empty_list(self):
        client = make_client()
        client._pause_until = time.monotonic() + 60
        with patch.object(client, "_get_json", new=AsyncMock()) as get_json:
            assert await client.search_volumes("Dune") == []
        get_json.assert_not_awaited()
