"""원격 캐시: Cloudflare R2 REST API 기반 키/블롭 저장소.

- httpx.AsyncClient 기반 비동기 클라이언트
- 타임아웃/429/5xx는 지수 백오프 + jitter로 재시도
- 그 외 4xx는 즉시 R2Error
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from ci_analytics.config import StorageConfig

logger = logging.getLogger(__name__)

_MAX_DELAY_SEC = 30.0
_PAGE_SIZE = 500


class R2Error(Exception):
    """R2 API 호출 실패."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"R2 API error {status_code}: {message}")


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int = 0
    last_modified: str = ""


@dataclass(frozen=True)
class CacheEntry:
    """restore 결과: 실제로 일치한 키와 페이로드."""

    key: str
    payload: bytes


class RemoteCache(Protocol):
    """AnalyticsCacheStore가 사용하는 원격 저장소 인터페이스."""

    def is_feature_available(self) -> bool: ...

    async def save(self, key: str, payload: bytes) -> str: ...

    async def restore(self, key: str, restore_keys: Sequence[str] = ()) -> CacheEntry | None: ...

    async def list_objects(self, prefix: str) -> list[ObjectInfo]: ...

    async def delete(self, key: str) -> None: ...


def _is_retryable(e: Exception) -> bool:
    if isinstance(e, httpx.TimeoutException):
        return True
    if isinstance(e, httpx.HTTPStatusError):
        return e.response.status_code >= 500 or e.response.status_code == 429
    return False


def _backoff_delay(attempt: int, base_delay: float) -> float:
    delay = min(base_delay * (2**attempt), _MAX_DELAY_SEC)
    jitter = delay * 0.2 * (2 * random.random() - 1)
    return max(0.0, delay + jitter)


class R2RemoteCache:
    """R2 버킷을 원격 캐시로 사용한다."""

    def __init__(
        self,
        config: StorageConfig,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._client = client
        self._sleep = sleep
        self._base_url = (
            f"{config.api_base.rstrip('/')}/accounts/{config.account_id}"
            f"/r2/buckets/{config.bucket_name}/objects"
        )

    def is_feature_available(self) -> bool:
        return bool(self._config.bucket_name and self._config.account_id and self._config.api_token)

    def _object_url(self, key: str) -> str:
        return f"{self._base_url}/{quote(key, safe='')}"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._config.api_token}"}
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=self._config.timeout_sec) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        """재시도 포함 요청. allow_not_found이면 404에 None을 반환한다."""
        max_retries = self._config.max_retries
        for attempt in range(max_retries + 1):
            try:
                resp = await self._send(method, url, **kwargs)
                if allow_not_found and resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return resp
            except (httpx.HTTPStatusError, httpx.TimeoutException) as e:
                if attempt >= max_retries or not _is_retryable(e):
                    status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else 0
                    raise R2Error(status, str(e)) from e
                wait = _backoff_delay(attempt, self._config.retry_delay_sec)
                logger.warning(
                    "Retry %d/%d after %.1fs: %s",
                    attempt + 1,
                    max_retries,
                    wait,
                    e,
                    extra={"event_code": "R2_RETRY", "attempt": attempt + 1},
                )
                await self._sleep(wait)
        raise AssertionError("unreachable")

    async def save(self, key: str, payload: bytes) -> str:
        await self._request("PUT", self._object_url(key), content=payload)
        logger.debug(
            "Saved %s (%d bytes)",
            key,
            len(payload),
            extra={"event_code": "R2_PUT", "key": key},
        )
        return key

    async def _get(self, key: str) -> bytes | None:
        resp = await self._request("GET", self._object_url(key), allow_not_found=True)
        return None if resp is None else resp.content

    async def restore(self, key: str, restore_keys: Sequence[str] = ()) -> CacheEntry | None:
        """정확한 키를 먼저 찾고, 없으면 restore_keys를 접두사로 가장 최근 객체를 찾는다."""
        payload = await self._get(key)
        if payload is not None:
            return CacheEntry(key=key, payload=payload)

        for prefix in restore_keys:
            objects = await self.list_objects(prefix)
            if not objects:
                continue
            newest = max(objects, key=lambda o: (o.last_modified, o.key))
            payload = await self._get(newest.key)
            if payload is not None:
                return CacheEntry(key=newest.key, payload=payload)
        return None

    async def list_objects(self, prefix: str) -> list[ObjectInfo]:
        objects: list[ObjectInfo] = []
        cursor: str | None = None

        while True:
            params: dict[str, str | int] = {"prefix": prefix, "per_page": _PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor

            resp = await self._request("GET", self._base_url, params=params)
            assert resp is not None
            data = resp.json()

            for obj in data.get("result") or []:
                if key := obj.get("key"):
                    objects.append(
                        ObjectInfo(
                            key=key,
                            size=int(obj.get("size") or 0),
                            last_modified=obj.get("last_modified") or "",
                        )
                    )

            # 페이지네이션
            cursor = (data.get("result_info") or {}).get("cursor")
            if not cursor or not data.get("result"):
                break

        return objects

    async def delete(self, key: str) -> None:
        await self._request("DELETE", self._object_url(key), allow_not_found=True)
