"""분석 데이터 캐시 저장소.

AnalyticsEvent 목록과 AggregatedAnalytics를 gzip JSON으로 원격 캐시에 저장/조회한다.
원격 오류는 예외로 전파하지 않고 항상 CacheResult로 반환한다.
"""

from __future__ import annotations

import gzip
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

import orjson
from pydantic import ValidationError

from ci_analytics.cache_key import (
    CacheKey,
    bucket_date,
    create_aggregated_cache_key,
    create_events_cache_key,
    generate_key,
    parse_key,
    repository_key_prefix,
    repository_slug,
    today_bucket,
)
from ci_analytics.config import AnalyticsConfig
from ci_analytics.models import AggregatedAnalytics, AnalyticsEvent, is_supported_schema_version
from ci_analytics.r2 import ObjectInfo, RemoteCache

logger = logging.getLogger(__name__)

EMPTY_EVENTS_ERROR = "Cannot store empty events array"


# ── 결과 데이터클래스 ─────────────────────────────────────


@dataclass
class CacheResult:
    """저장/조회 결과."""

    success: bool
    key: str | None = None
    hit: bool = False
    size: int = 0
    duration_ms: int = 0
    error: str | None = None
    data: Any = None
    available: bool = True


@dataclass
class CacheStats:
    total_size: int = 0
    entry_count: int = 0
    oldest_entry: str | None = None
    newest_entry: str | None = None


class PayloadError(ValueError):
    """페이로드 인코딩/디코딩 실패."""


# ── 인코딩 ───────────────────────────────────────────────


def encode_payload(record: Any, max_size: int) -> bytes:
    """JSON 직렬화 후 크기를 확인하고 gzip으로 압축한다."""
    raw = orjson.dumps(record)
    if len(raw) > max_size:
        raise PayloadError(f"Data size {len(raw)} bytes exceeds maximum {max_size} bytes")
    return gzip.compress(raw)


def decode_payload(payload: bytes) -> Any:
    try:
        return orjson.loads(gzip.decompress(payload))
    except (OSError, EOFError, orjson.JSONDecodeError) as e:
        raise PayloadError(f"Failed to decode cached payload: {e}") from e


def _check_schema(records: Sequence[AnalyticsEvent | AggregatedAnalytics]) -> None:
    for record in records:
        if not is_supported_schema_version(record.schema_version):
            raise PayloadError(f"Unsupported schema version: {record.schema_version}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


# ── 저장소 ───────────────────────────────────────────────


class AnalyticsCacheStore:
    def __init__(self, config: AnalyticsConfig, remote: RemoteCache):
        self._config = config
        self._remote = remote

    @property
    def prefix(self) -> str:
        return self._config.cache_key_prefix

    def is_available(self) -> bool:
        try:
            return self._remote.is_feature_available()
        except Exception as e:
            logger.warning("Remote cache availability check failed: %s", e)
            return False

    async def _save(self, key: str, record: Any, repository: str) -> CacheResult:
        started = time.monotonic()
        try:
            payload = encode_payload(record, self._config.max_data_size)
            await self._remote.save(key, payload)
        except Exception as e:
            logger.warning(
                "Failed to store %s: %s",
                key,
                e,
                extra={"event_code": "CACHE_STORE_FAILED", "key": key, "repository": repository},
            )
            return CacheResult(
                success=False, key=key, error=str(e), duration_ms=_elapsed_ms(started)
            )

        result = CacheResult(
            success=True,
            key=key,
            size=len(payload),
            duration_ms=_elapsed_ms(started),
        )
        logger.info(
            "Stored %s (%d bytes)",
            key,
            result.size,
            extra={
                "event_code": "CACHE_STORE",
                "key": key,
                "repository": repository,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    async def _restore(
        self,
        key: str,
        repository: str,
        restore_keys: Sequence[str] = (),
    ) -> tuple[CacheResult, Any]:
        """원격에서 키를 조회해 (결과, 디코딩된 레코드)를 반환한다. 미스/실패 시 레코드는 None."""
        started = time.monotonic()
        try:
            entry = await self._remote.restore(key, restore_keys)
        except Exception as e:
            logger.warning(
                "Failed to retrieve %s: %s",
                key,
                e,
                extra={"event_code": "CACHE_RESTORE_FAILED", "key": key, "repository": repository},
            )
            result = CacheResult(
                success=False, key=key, error=str(e), duration_ms=_elapsed_ms(started)
            )
            return result, None

        if entry is None:
            logger.info(
                "Cache miss for %s",
                key,
                extra={"event_code": "CACHE_MISS", "key": key, "repository": repository},
            )
            return CacheResult(success=False, key=key, duration_ms=_elapsed_ms(started)), None

        try:
            record = decode_payload(entry.payload)
        except PayloadError as e:
            return (
                CacheResult(success=False, key=entry.key, hit=True, error=str(e)),
                None,
            )

        result = CacheResult(
            success=True,
            key=entry.key,
            hit=True,
            size=len(entry.payload),
            duration_ms=_elapsed_ms(started),
        )
        return result, record

    # ── 이벤트 ──

    async def store_events(
        self,
        repository: str,
        events: Sequence[AnalyticsEvent],
        bucket: str | None = None,
    ) -> CacheResult:
        if not events:
            return CacheResult(success=False, error=EMPTY_EVENTS_ERROR)
        if not self.is_available():
            return CacheResult(success=False, available=False)

        key = create_events_cache_key(self.prefix, repository, bucket or today_bucket())
        return await self._save(key, [e.to_record() for e in events], repository)

    async def retrieve_events(self, repository: str, bucket: str | None = None) -> CacheResult:
        if not self.is_available():
            return CacheResult(success=False, available=False)

        key = create_events_cache_key(self.prefix, repository, bucket or today_bucket())
        result, raw = await self._restore(key, repository)
        if raw is None:
            return result

        try:
            if not isinstance(raw, list):
                raise PayloadError("Cached events payload is not a list")
            events = [AnalyticsEvent.model_validate(item) for item in raw]
            _check_schema(events)
        except (ValidationError, PayloadError) as e:
            return CacheResult(success=False, key=result.key, hit=True, error=str(e))

        result.data = events
        return result

    # ── 집계 ──

    async def store_aggregated(
        self,
        repository: str,
        aggregated: AggregatedAnalytics,
        bucket: str | None = None,
    ) -> CacheResult:
        if not self.is_available():
            return CacheResult(success=False, available=False)

        key = create_aggregated_cache_key(self.prefix, repository, bucket or today_bucket())
        return await self._save(key, aggregated.to_record(), repository)

    async def retrieve_aggregated(
        self,
        repository: str,
        bucket: str | None = None,
        *,
        fallback_to_latest: bool = False,
    ) -> CacheResult:
        """집계를 조회한다. fallback_to_latest이면 해당 날짜가 없을 때 가장 최근 집계를 반환한다."""
        if not self.is_available():
            return CacheResult(success=False, available=False)

        key = create_aggregated_cache_key(self.prefix, repository, bucket or today_bucket())
        restore_keys: tuple[str, ...] = ()
        if fallback_to_latest:
            restore_keys = (
                generate_key(CacheKey(prefix=self.prefix, repository=repository, type="aggregated"))
                + "-",
            )
        result, raw = await self._restore(key, repository, restore_keys)
        if raw is None:
            return result

        try:
            aggregated = AggregatedAnalytics.model_validate(raw)
            _check_schema([aggregated])
        except (ValidationError, PayloadError) as e:
            return CacheResult(success=False, key=result.key, hit=True, error=str(e))

        result.data = aggregated
        return result

    # ── 관리 작업 (best-effort) ──

    async def _list(self, prefix: str) -> list[ObjectInfo]:
        if not self.is_available():
            return []
        try:
            return await self._remote.list_objects(prefix)
        except Exception as e:
            logger.warning(
                "Failed to list %s: %s",
                prefix,
                e,
                extra={"event_code": "CACHE_LIST_FAILED"},
            )
            return []

    async def _repository_objects(self, repository: str) -> list[ObjectInfo]:
        """저장소 접두사로 조회한 뒤 키를 파싱해 정확히 같은 저장소만 남긴다.

        "acme/web-" 접두사는 "acme/web-app"의 키와도 겹치기 때문이다.
        """
        slug = repository_slug(repository)
        objects = await self._list(repository_key_prefix(self.prefix, repository))
        return [
            o
            for o in objects
            if (parsed := parse_key(o.key, self.prefix)) is not None and parsed.repository == slug
        ]

    async def list_keys(self, repository: str) -> list[str]:
        objects = await self._repository_objects(repository)
        return sorted(o.key for o in objects)

    async def get_cache_stats(self, repository: str | None = None) -> CacheStats:
        if repository:
            objects = await self._repository_objects(repository)
        else:
            objects = await self._list(f"{self.prefix}-")
        if not objects:
            return CacheStats()

        by_time = sorted(objects, key=lambda o: (o.last_modified, o.key))
        return CacheStats(
            total_size=sum(o.size for o in objects),
            entry_count=len(objects),
            oldest_entry=by_time[0].key,
            newest_entry=by_time[-1].key,
        )

    async def _delete_keys(self, keys: Sequence[str]) -> int:
        deleted = 0
        for key in keys:
            try:
                await self._remote.delete(key)
                deleted += 1
            except Exception as e:
                logger.warning(
                    "Failed to delete %s: %s",
                    key,
                    e,
                    extra={"event_code": "CACHE_DELETE_FAILED", "key": key},
                )
        return deleted

    async def clear_repository(self, repository: str) -> int:
        """저장소의 모든 키를 삭제하고 삭제 건수를 반환한다."""
        keys = await self.list_keys(repository)
        deleted = await self._delete_keys(keys)
        logger.info(
            "Cleared %d/%d keys for %s",
            deleted,
            len(keys),
            repository,
            extra={"event_code": "CACHE_CLEAR", "repository": repository, "count": deleted},
        )
        return deleted

    async def prune_expired(self, repository: str, today: date | None = None) -> int:
        """보존 기간(retention_days)이 지난 날짜 버킷 키를 삭제한다."""
        cutoff = (today or date.fromisoformat(today_bucket())) - timedelta(
            days=self._config.retention_days
        )
        expired: list[str] = []
        for key in await self.list_keys(repository):
            parsed = parse_key(key, self.prefix)
            if parsed is None or parsed.timestamp is None:
                continue
            key_date = bucket_date(parsed.timestamp)
            if key_date is not None and key_date < cutoff:
                expired.append(key)

        deleted = await self._delete_keys(expired)
        if deleted:
            logger.info(
                "Pruned %d expired keys for %s",
                deleted,
                repository,
                extra={"event_code": "CACHE_PRUNE", "repository": repository, "count": deleted},
            )
        return deleted
