"""민감 정보 마스킹.

키 이름 기반 재귀 마스킹(sanitize)과 자유 텍스트 토큰 마스킹(scrub_text),
유형별 전략(redact, hash, partial, remove)을 적용하는 sanitize_with_report를 제공한다.
패턴 매칭 기반의 best-effort 처리이며 보안 경계가 아니다.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

REDACTED = "***REDACTED***"
TRUNCATED = "***TRUNCATED***"
MAX_DEPTH = 10

DEFAULT_SENSITIVE_PATTERNS: tuple[str, ...] = (
    "token",
    "password",
    "secret",
    "key",
    "auth",
    "credential",
    "bearer",
    "private",
)

# 값 자체가 비밀로 보이는 문자열 패턴
_TEXT_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
            re.DOTALL,
        ),
        REDACTED,
    ),
    (re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{16,}|github_pat_[A-Za-z0-9_]{20,})\b"), REDACTED),
    (re.compile(r"\b(Bearer|Basic|token)\s+[A-Za-z0-9._~+/=-]{8,}", re.IGNORECASE), rf"\1 {REDACTED}"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"), REDACTED),
    (re.compile(r"(://)[^/\s:@]+:[^/\s@]+@"), rf"\1{REDACTED}@"),
)


def is_sensitive_key(key: str, patterns: Iterable[str] = DEFAULT_SENSITIVE_PATTERNS) -> bool:
    lowered = key.lower()
    return any(p.lower() in lowered for p in patterns if p)


def sanitize(
    value: Any,
    patterns: Iterable[str] = DEFAULT_SENSITIVE_PATTERNS,
    *,
    max_depth: int = MAX_DEPTH,
) -> Any:
    """중첩 구조에서 민감한 키의 값을 마스킹한 사본을 반환한다.

    - 매핑: 키가 패턴을 (대소문자 무시) 포함하면 값의 타입과 무관하게 REDACTED로 치환
    - 시퀀스(list/tuple): 원소 단위로 재귀 (키 매칭 없음), 원래 타입 유지
    - 그 외 스칼라: 그대로 통과
    - max_depth를 넘거나 순환 참조를 만나면 해당 하위 구조를 TRUNCATED로 치환

    입력은 변경하지 않는다.
    """
    pattern_list = tuple(patterns)
    return _sanitize(value, pattern_list, 0, max_depth, set())


def _sanitize(
    value: Any,
    patterns: tuple[str, ...],
    depth: int,
    max_depth: int,
    seen: set[int],
) -> Any:
    if not isinstance(value, (Mapping, list, tuple)):
        return value

    if depth >= max_depth or id(value) in seen:
        return TRUNCATED

    seen.add(id(value))
    try:
        if isinstance(value, Mapping):
            return {
                k: (
                    REDACTED
                    if isinstance(k, str) and is_sensitive_key(k, patterns)
                    else _sanitize(v, patterns, depth + 1, max_depth, seen)
                )
                for k, v in value.items()
            }
        items = [_sanitize(v, patterns, depth + 1, max_depth, seen) for v in value]
        return tuple(items) if isinstance(value, tuple) else items
    finally:
        seen.discard(id(value))


def scrub_text(text: str | None) -> str | None:
    """자유 텍스트(에러 메시지, 스택 트레이스)에서 토큰처럼 보이는 값을 마스킹한다."""
    if not text:
        return text
    for pattern, replacement in _TEXT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


# ── 전략 기반 마스킹 ─────────────────────────────────────

SanitizationStrategy = Literal["redact", "hash", "partial", "remove"]

HASH_SALT = "ci-analytics"
PARTIAL_KEEP = 4
MASK_CHAR = "*"

# 값 유형별 기본 전략
DEFAULT_VALUE_STRATEGIES: dict[str, SanitizationStrategy] = {
    "private": "redact",
    "token": "redact",
    "credential": "redact",
    "url": "partial",
    "email": "partial",
    "ip": "hash",
    "uuid": "hash",
}


@dataclass(frozen=True)
class ValuePattern:
    name: str
    type: str
    pattern: re.Pattern[str]


# 순서대로 적용된다. 앞 패턴이 가린 값은 뒤 패턴에 다시 걸리지 않는다.
VALUE_PATTERNS: tuple[ValuePattern, ...] = (
    ValuePattern(
        "private-key",
        "private",
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
            re.DOTALL,
        ),
    ),
    ValuePattern(
        "github-token",
        "token",
        re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{16,}|github_pat_[A-Za-z0-9_]{20,})\b"),
    ),
    ValuePattern("jwt", "token", re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")),
    ValuePattern(
        "auth-header",
        "credential",
        re.compile(r"\b(?:Bearer|Basic)\s+[A-Za-z0-9._~+/=-]{8,}", re.IGNORECASE),
    ),
    ValuePattern(
        "url-with-credentials",
        "url",
        re.compile(r"https?://[^/\s:@]+:[^/\s@]+@[^/\s]+", re.IGNORECASE),
    ),
    ValuePattern("email", "email", re.compile(r"\b[\w.%+-]+@[\w.-]+\.[a-z]{2,}\b", re.IGNORECASE)),
    ValuePattern("ip", "ip", re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")),
    ValuePattern(
        "uuid",
        "uuid",
        re.compile(
            r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.IGNORECASE
        ),
    ),
)


@dataclass(frozen=True)
class SanitizationResult:
    """마스킹 결과와 통계."""

    data: Any
    sanitized_count: int = 0
    found_types: tuple[str, ...] = ()

    @property
    def was_modified(self) -> bool:
        return self.sanitized_count > 0


def apply_strategy(value: str, strategy: SanitizationStrategy) -> str:
    """값 하나에 전략을 적용한다. remove는 빈 문자열을 반환한다."""
    if strategy == "remove":
        return ""
    if strategy == "partial":
        if len(value) <= PARTIAL_KEEP * 2:
            return MASK_CHAR * len(value)
        middle = MASK_CHAR * (len(value) - PARTIAL_KEEP * 2)
        return f"{value[:PARTIAL_KEEP]}{middle}{value[-PARTIAL_KEEP:]}"
    if strategy == "hash":
        return hashlib.sha256((value + HASH_SALT).encode()).hexdigest()[:16]
    return REDACTED


def scan_text(
    text: str,
    value_strategies: Mapping[str, SanitizationStrategy] | None = None,
) -> tuple[str, int, set[str]]:
    """VALUE_PATTERNS로 텍스트를 마스킹하고 (결과, 치환 수, 발견 유형)을 반환한다."""
    strategies = {**DEFAULT_VALUE_STRATEGIES, **(value_strategies or {})}
    count = 0
    found: set[str] = set()

    for value_pattern in VALUE_PATTERNS:
        strategy = strategies.get(value_pattern.type, "redact")
        text, n = value_pattern.pattern.subn(lambda m: apply_strategy(m.group(0), strategy), text)
        if n:
            count += n
            found.add(value_pattern.type)
    return text, count, found


def sanitize_with_report(
    value: Any,
    patterns: Iterable[str] = DEFAULT_SENSITIVE_PATTERNS,
    *,
    key_strategies: Mapping[str, SanitizationStrategy] | None = None,
    value_strategies: Mapping[str, SanitizationStrategy] | None = None,
    max_depth: int = MAX_DEPTH,
) -> SanitizationResult:
    """sanitize와 같은 키 마스킹에 더해 문자열 값도 VALUE_PATTERNS로 검사한다.

    - 민감 키의 전략은 key_strategies[매칭된 패턴] (기본 redact).
      remove이면 키 자체를 제거하고, 문자열이 아닌 값은 항상 REDACTED로 치환한다.
    - 문자열 값은 유형별 전략(value_strategies)으로 부분 치환된다.
    """
    pattern_list = tuple(p for p in patterns if p)
    key_rules = dict(key_strategies or {})
    stats = {"count": 0}
    found: set[str] = set()

    def key_strategy(key: str) -> SanitizationStrategy | None:
        lowered = key.lower()
        for p in pattern_list:
            if p.lower() in lowered:
                found.add(p.lower())
                return key_rules.get(p, "redact")
        return None

    def walk(node: Any, depth: int, seen: set[int]) -> Any:
        if isinstance(node, str):
            text, n, types = scan_text(node, value_strategies)
            stats["count"] += n
            found.update(types)
            return text
        if not isinstance(node, (Mapping, list, tuple)):
            return node
        if depth >= max_depth or id(node) in seen:
            stats["count"] += 1
            return TRUNCATED

        seen.add(id(node))
        try:
            if isinstance(node, Mapping):
                out: dict[Any, Any] = {}
                for k, v in node.items():
                    strategy = key_strategy(k) if isinstance(k, str) else None
                    if strategy is None:
                        out[k] = walk(v, depth + 1, seen)
                        continue
                    stats["count"] += 1
                    if strategy == "remove":
                        continue
                    out[k] = apply_strategy(v, strategy) if isinstance(v, str) else REDACTED
                return out
            items = [walk(v, depth + 1, seen) for v in node]
            return tuple(items) if isinstance(node, tuple) else items
        finally:
            seen.discard(id(node))

    data = walk(value, 0, set())
    return SanitizationResult(
        data=data,
        sanitized_count=stats["count"],
        found_types=tuple(sorted(found)),
    )


def has_sensitive_data(
    value: Any,
    patterns: Iterable[str] = DEFAULT_SENSITIVE_PATTERNS,
    *,
    max_depth: int = MAX_DEPTH,
) -> bool:
    """민감 키나 민감해 보이는 값이 있는지 확인한다 (입력은 변경하지 않음)."""
    pattern_list = tuple(patterns)

    def walk(node: Any, depth: int, seen: set[int]) -> bool:
        if isinstance(node, str):
            return any(vp.pattern.search(node) for vp in VALUE_PATTERNS)
        if not isinstance(node, (Mapping, list, tuple)):
            return False
        if depth >= max_depth or id(node) in seen:
            return False
        seen.add(id(node))
        if isinstance(node, Mapping):
            return any(
                (isinstance(k, str) and is_sensitive_key(k, pattern_list)) or walk(v, depth + 1, seen)
                for k, v in node.items()
            )
        return any(walk(v, depth + 1, seen) for v in node)

    return walk(value, 0, set())
