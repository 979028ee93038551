"""캐시 키 생성/파싱.

형식: {prefix}-{owner-repo}-{type}-{version}[-{YYYY-MM-DD}]
빈 구성요소는 placeholder 없이 생략한다. type은 항상 포함된다.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from ci_analytics.models import CACHE_KEY_VERSION

CacheKeyType = Literal["events", "aggregated", "config"]
KEY_TYPES: tuple[str, ...] = ("events", "aggregated", "config")
SEPARATOR = "-"

_DATE_TAIL = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class CacheKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: str = ""
    repository: str = ""
    type: CacheKeyType
    version: str = CACHE_KEY_VERSION
    timestamp: str | None = None


def repository_slug(repository: str) -> str:
    return repository.replace("/", SEPARATOR)


def generate_key(key: CacheKey) -> str:
    parts = [
        key.prefix,
        repository_slug(key.repository),
        key.type,
        key.version,
        key.timestamp or "",
    ]
    return SEPARATOR.join(p for p in parts if p)


def repository_key_prefix(prefix: str, repository: str) -> str:
    """한 저장소의 모든 키가 공유하는 접두사."""
    parts = [p for p in (prefix, repository_slug(repository)) if p]
    return SEPARATOR.join(parts) + SEPARATOR


def parse_key(key: str, prefix: str) -> CacheKey | None:
    """generate_key의 역변환. prefix를 알아야 하며, 형식이 맞지 않으면 None.

    저장소는 slug 형태(owner-repo)로 복원된다.
    """
    if prefix:
        if not key.startswith(prefix + SEPARATOR):
            return None
        rest = key[len(prefix) + 1 :]
    else:
        rest = key

    tokens = rest.split(SEPARATOR)
    has_date = len(tokens) >= 5 and bool(_DATE_TAIL.match(SEPARATOR.join(tokens[-3:])))
    index = len(tokens) - (5 if has_date else 2)
    if index < 0 or tokens[index] not in KEY_TYPES:
        return None

    return CacheKey(
        prefix=prefix,
        repository=SEPARATOR.join(tokens[:index]),
        type=tokens[index],  # type: ignore[arg-type]
        version=tokens[index + 1],
        timestamp=SEPARATOR.join(tokens[index + 2 :]) or None,
    )


def today_bucket(now: datetime | None = None) -> str:
    return (now or datetime.now(tz=UTC)).strftime("%Y-%m-%d")


def bucket_date(bucket: str) -> date | None:
    try:
        return datetime.strptime(bucket, "%Y-%m-%d").date()
    except ValueError:
        return None


def create_events_cache_key(prefix: str, repository: str, bucket: str | None = None) -> str:
    return generate_key(
        CacheKey(prefix=prefix, repository=repository, type="events", timestamp=bucket)
    )


def create_aggregated_cache_key(prefix: str, repository: str, bucket: str | None = None) -> str:
    return generate_key(
        CacheKey(prefix=prefix, repository=repository, type="aggregated", timestamp=bucket)
    )


def create_config_cache_key(prefix: str, repository: str) -> str:
    return generate_key(CacheKey(prefix=prefix, repository=repository, type="config"))
