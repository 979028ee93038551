"""분석 설정 로딩 + Pydantic 모델.

우선순위: 시스템 환경변수 > .env 파일 > YAML 설정 파일 > 기본값
잘못된 값은 ConfigValidationError로 즉시 실패한다 (기본값으로 대체하지 않음).
"""

from __future__ import annotations

import logging
import math
import os
import random
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ci_analytics.sanitizer import DEFAULT_SENSITIVE_PATTERNS

LogLevel = Literal["debug", "info", "warn", "error"]
LOG_LEVELS: tuple[str, ...] = ("debug", "info", "warn", "error")

DEFAULT_MAX_DATA_SIZE = 10 * 1024 * 1024

_LOG_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class ConfigValidationError(ValueError):
    """설정 값 검증 실패."""

    def __init__(self, field: str, value: Any, message: str | None = None):
        self.field = field
        self.value = value
        detail = message or f"invalid value {value!r}"
        super().__init__(f"Configuration validation error for {field}: {detail}")


# ── 설정 모델 ──────────────────────────────────────────


class StorageConfig(BaseModel):
    """원격 캐시(R2) 접속 설정."""

    model_config = ConfigDict(frozen=True)

    bucket_name: str = ""
    account_id: str = ""
    api_token: str = Field(default="", repr=False)
    api_base: str = "https://api.cloudflare.com/client/v4"
    max_retries: int = Field(default=3, ge=0)
    retry_delay_sec: float = Field(default=1.0, ge=0)
    timeout_sec: float = Field(default=30.0, gt=0)


class AnalyticsConfig(BaseModel):
    """분석 서브시스템 설정 (프로세스당 1회 생성, 불변)."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    log_level: LogLevel = "info"
    collect_cache: bool = True
    collect_docker: bool = True
    collect_api: bool = True
    collect_failures: bool = True
    sample_rate: float = Field(default=1.0, ge=0, le=1)
    cache_key_prefix: str = Field(default="ci-analytics", min_length=1)
    max_data_size: int = Field(default=DEFAULT_MAX_DATA_SIZE, gt=0)
    retention_days: int = Field(default=7, gt=0)
    sanitize_patterns: tuple[str, ...] = Field(default=DEFAULT_SENSITIVE_PATTERNS, min_length=1)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("cache_key_prefix")
    @classmethod
    def prefix_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("cache_key_prefix must not be blank")
        return v

    @field_validator("sanitize_patterns", mode="before")
    @classmethod
    def split_patterns(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_patterns(v)
        return v


# ── 값 파서 ────────────────────────────────────────────


def parse_bool(field: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ConfigValidationError(field, raw, f"expected true/false/1/0/yes/no, got {raw!r}")


def parse_number(
    field: str,
    raw: str,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
    exclusive_minimum: bool = False,
) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigValidationError(field, raw, f"expected a number, got {raw!r}") from exc
    if not math.isfinite(value):
        raise ConfigValidationError(field, raw, f"must be a finite number, got {raw!r}")

    if minimum is not None:
        if exclusive_minimum and value <= minimum:
            raise ConfigValidationError(field, raw, f"must be greater than {minimum:g}")
        if not exclusive_minimum and value < minimum:
            raise ConfigValidationError(field, raw, f"must be at least {minimum:g}")
    if maximum is not None and value > maximum:
        raise ConfigValidationError(field, raw, f"must be at most {maximum:g}")
    return value


def parse_patterns(raw: str) -> tuple[str, ...]:
    """쉼표 구분 문자열을 패턴 튜플로 변환한다 (공백 제거, 빈 항목 제외)."""
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _parse_log_level(field: str, raw: str) -> str:
    value = raw.strip().lower()
    if value not in LOG_LEVELS:
        raise ConfigValidationError(field, raw, f"must be one of {', '.join(LOG_LEVELS)}")
    return value


def _parse_prefix(field: str, raw: str) -> str:
    if not raw.strip():
        raise ConfigValidationError(field, raw, "must not be empty")
    return raw.strip()


def _parse_pattern_list(field: str, raw: str) -> tuple[str, ...]:
    patterns = parse_patterns(raw)
    if not patterns:
        raise ConfigValidationError(field, raw, "must contain at least one pattern")
    return patterns


def _parse_positive_int(field: str, raw: str) -> int:
    value = parse_number(field, raw, minimum=0, exclusive_minimum=True)
    if not value.is_integer():
        raise ConfigValidationError(field, raw, f"expected a whole number, got {raw!r}")
    return int(value)


# 환경변수 → (설정 필드, 파서)
ENV_OVERRIDES: dict[str, tuple[str, Callable[[str, str], Any]]] = {
    "CI_ANALYTICS_ENABLED": ("enabled", parse_bool),
    "CI_ANALYTICS_LOG_LEVEL": ("log_level", _parse_log_level),
    "CI_ANALYTICS_COLLECT_CACHE": ("collect_cache", parse_bool),
    "CI_ANALYTICS_COLLECT_DOCKER": ("collect_docker", parse_bool),
    "CI_ANALYTICS_COLLECT_API": ("collect_api", parse_bool),
    "CI_ANALYTICS_COLLECT_FAILURES": ("collect_failures", parse_bool),
    "CI_ANALYTICS_SAMPLE_RATE": (
        "sample_rate",
        lambda f, r: parse_number(f, r, minimum=0, maximum=1),
    ),
    "CI_ANALYTICS_CACHE_KEY_PREFIX": ("cache_key_prefix", _parse_prefix),
    "CI_ANALYTICS_MAX_DATA_SIZE": ("max_data_size", _parse_positive_int),
    "CI_ANALYTICS_RETENTION_DAYS": ("retention_days", _parse_positive_int),
    "CI_ANALYTICS_SANITIZE_PATTERNS": ("sanitize_patterns", _parse_pattern_list),
}

STORAGE_ENV_OVERRIDES: dict[str, str] = {
    "CI_ANALYTICS_R2_BUCKET": "bucket_name",
    "CLOUDFLARE_ACCOUNT_ID": "account_id",
    "CLOUDFLARE_API_TOKEN": "api_token",
}

# YAML 값도 환경변수와 같은 파서로 검증한다
FILE_PARSERS: dict[str, Callable[[str, str], Any]] = {
    field: parser for field, parser in ENV_OVERRIDES.values()
}


# ── 로딩 ───────────────────────────────────────────────


def _validate(raw: dict[str, Any]) -> AnalyticsConfig:
    try:
        return AnalyticsConfig.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "config"
        raise ConfigValidationError(field, first.get("input"), first["msg"]) from exc


def _file_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> AnalyticsConfig:
    """설정 파일과 환경변수에서 AnalyticsConfig를 로딩한다.

    Args:
        path: YAML 설정 파일 경로 (없으면 환경변수와 기본값만 사용)
        environ: 환경변수 매핑 (기본: os.environ)

    Raises:
        ValueError: 설정 파일이 비어 있는 경우
        ConfigValidationError: 잘못된 설정 값
    """
    raw: dict[str, Any] = {}

    if path is not None:
        # 설정 파일과 같은 디렉터리의 .env 탐색
        load_dotenv(dotenv_path=path.parent / ".env", override=False)
        with open(path) as f:
            loaded = yaml.safe_load(f)
        if loaded is None:
            raise ValueError(f"Empty config file: {path}")
        if not isinstance(loaded, Mapping):
            raise ConfigValidationError("config", loaded, "top level must be a mapping")
        raw = dict(loaded)
        for field, parser in FILE_PARSERS.items():
            if field in raw:
                raw[field] = parser(field, _file_text(raw[field]))
    else:
        load_dotenv(override=False)

    env = os.environ if environ is None else environ

    for env_name, (field, parser) in ENV_OVERRIDES.items():
        if (value := env.get(env_name)) is not None:
            raw[field] = parser(field, value)

    for env_name, field in STORAGE_ENV_OVERRIDES.items():
        if value := env.get(env_name):
            storage = raw.get("storage")
            if storage is None:
                storage = {}
            elif not isinstance(storage, Mapping):
                raise ConfigValidationError("storage", storage, "must be a mapping")
            raw["storage"] = {**storage, field: value}

    return _validate(raw)


def create_config(**overrides: Any) -> AnalyticsConfig:
    """기본값에 overrides를 적용한 설정을 생성한다 (테스트, 프로그래밍 방식 사용)."""
    return _validate(overrides)


# ── 게이트 ─────────────────────────────────────────────


def is_metric_collection_enabled(config: AnalyticsConfig, metric_type: str) -> bool:
    """전역 활성화 + 해당 수집기 플래그가 모두 켜져 있어야 True."""
    if not config.enabled:
        return False
    flags = {
        "cache": config.collect_cache,
        "docker": config.collect_docker,
        "api": config.collect_api,
        "failures": config.collect_failures,
    }
    return flags.get(metric_type, False)


def should_collect_sample(
    config: AnalyticsConfig,
    rng: Callable[[], float] = random.random,
) -> bool:
    if config.sample_rate >= 1:
        return True
    if config.sample_rate <= 0:
        return False
    return rng() < config.sample_rate


def get_config_summary(config: AnalyticsConfig) -> dict[str, Any]:
    """로그/CLI 출력용 요약. 패턴 목록과 API 토큰은 노출하지 않는다."""
    return {
        "enabled": config.enabled,
        "log_level": config.log_level,
        "collectors": {
            "cache": config.collect_cache,
            "docker": config.collect_docker,
            "api": config.collect_api,
            "failures": config.collect_failures,
        },
        "sample_rate": config.sample_rate,
        "cache_key_prefix": config.cache_key_prefix,
        "max_data_size": config.max_data_size,
        "retention_days": config.retention_days,
        "sanitize_patterns_count": len(config.sanitize_patterns),
        "storage": {
            "bucket_name": config.storage.bucket_name,
            "account_configured": bool(config.storage.account_id),
            "token_configured": bool(config.storage.api_token),
        },
    }


def log_level_from_name(name: str) -> int:
    return _LOG_LEVEL_MAP.get(name.lower(), logging.INFO)
