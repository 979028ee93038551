"""R2RemoteCache 테스트 (pytest-httpx mock)."""

from __future__ import annotations

import pytest
from ci_analytics.config import StorageConfig
from ci_analytics.r2 import R2Error, R2RemoteCache

BASE = "https://api.cloudflare.com/client/v4/accounts/acc/r2/buckets/ci-analytics/objects"


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture()
def storage_config() -> StorageConfig:
    return StorageConfig(
        bucket_name="ci-analytics",
        account_id="acc",
        api_token="tok",
        max_retries=2,
        retry_delay_sec=0,
    )


@pytest.fixture()
def r2(storage_config: StorageConfig) -> R2RemoteCache:
    return R2RemoteCache(storage_config, sleep=_no_sleep)


class TestAvailability:
    def test_requires_all_credentials(self) -> None:
        assert R2RemoteCache(StorageConfig(bucket_name="b", account_id="a", api_token="t")).is_feature_available()
        assert not R2RemoteCache(StorageConfig(bucket_name="b", account_id="a")).is_feature_available()
        assert not R2RemoteCache(StorageConfig()).is_feature_available()


class TestSaveRestore:
    @pytest.mark.asyncio
    async def test_save_puts_payload(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="PUT", url=f"{BASE}/p-a-b-events-1.0", json={"success": True})

        key = await r2.save("p-a-b-events-1.0", b"payload")

        assert key == "p-a-b-events-1.0"
        request = httpx_mock.get_request()
        assert request.content == b"payload"
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_restore_exact_hit(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="GET", url=f"{BASE}/k1", content=b"data")

        entry = await r2.restore("k1")

        assert entry is not None
        assert entry.key == "k1"
        assert entry.payload == b"data"

    @pytest.mark.asyncio
    async def test_restore_miss(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="GET", url=f"{BASE}/k1", status_code=404)

        assert await r2.restore("k1") is None

    @pytest.mark.asyncio
    async def test_restore_keys_pick_newest(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="GET", url=f"{BASE}/p-agg-2024-01-20", status_code=404)
        httpx_mock.add_response(
            method="GET",
            url=f"{BASE}?prefix=p-agg-&per_page=500",
            json={
                "result": [
                    {"key": "p-agg-2024-01-10", "size": 10, "last_modified": "2024-01-10T00:00:00Z"},
                    {"key": "p-agg-2024-01-12", "size": 12, "last_modified": "2024-01-12T00:00:00Z"},
                ],
                "result_info": {},
            },
        )
        httpx_mock.add_response(method="GET", url=f"{BASE}/p-agg-2024-01-12", content=b"newest")

        entry = await r2.restore("p-agg-2024-01-20", ["p-agg-"])

        assert entry is not None
        assert entry.key == "p-agg-2024-01-12"
        assert entry.payload == b"newest"

    @pytest.mark.asyncio
    async def test_key_is_url_quoted(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="GET", url=f"{BASE}/a%2Fb", content=b"x")

        entry = await r2.restore("a/b")

        assert entry is not None and entry.payload == b"x"


class TestListDelete:
    @pytest.mark.asyncio
    async def test_pagination(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(
            method="GET",
            url=f"{BASE}?prefix=p-&per_page=500",
            json={
                "result": [{"key": "p-1", "size": 1, "last_modified": "t1"}],
                "result_info": {"cursor": "c2"},
            },
        )
        httpx_mock.add_response(
            method="GET",
            url=f"{BASE}?prefix=p-&per_page=500&cursor=c2",
            json={"result": [{"key": "p-2", "size": 2, "last_modified": "t2"}], "result_info": {}},
        )

        objects = await r2.list_objects("p-")

        assert [o.key for o in objects] == ["p-1", "p-2"]
        assert [o.size for o in objects] == [1, 2]

    @pytest.mark.asyncio
    async def test_empty_listing(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="GET", url=f"{BASE}?prefix=x-&per_page=500", json={"result": []})

        assert await r2.list_objects("x-") == []

    @pytest.mark.asyncio
    async def test_delete_tolerates_404(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="DELETE", url=f"{BASE}/gone", status_code=404)

        await r2.delete("gone")


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_on_server_error(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="GET", url=f"{BASE}/k", status_code=503)
        httpx_mock.add_response(method="GET", url=f"{BASE}/k", content=b"ok")

        entry = await r2.restore("k")

        assert entry is not None and entry.payload == b"ok"
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, httpx_mock, r2: R2RemoteCache) -> None:
        for _ in range(3):
            httpx_mock.add_response(method="PUT", url=f"{BASE}/k", status_code=500)

        with pytest.raises(R2Error) as exc_info:
            await r2.save("k", b"x")
        assert exc_info.value.status_code == 500
        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, httpx_mock, r2: R2RemoteCache) -> None:
        httpx_mock.add_response(method="PUT", url=f"{BASE}/k", status_code=403)

        with pytest.raises(R2Error) as exc_info:
            await r2.save("k", b"x")
        assert exc_info.value.status_code == 403
        assert len(httpx_mock.get_requests()) == 1
