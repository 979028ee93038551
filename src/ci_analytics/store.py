"""실행 단위 작업 저장소.

계측 지점에서 기록한 원시 작업 레코드를 collect 시점까지 메모리에 보관한다.
실행마다 RunStores를 하나 만들어 계측 지점과 수집기에 함께 주입한다.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class OperationStore(Generic[T]):
    """작업 id를 키로 하는 저장소.

    같은 id에 대한 쓰기는 마지막 값이 남는다. id가 서로 다르면 쓰기는 독립적이다.
    """

    def __init__(self) -> None:
        self._records: dict[str, T] = {}

    def add(self, operation_id: str, record: T) -> None:
        self._records[operation_id] = record

    def get(self, operation_id: str) -> T | None:
        return self._records.get(operation_id)

    def update(self, operation_id: str, **changes: Any) -> bool:
        """기존 레코드를 변경한 사본으로 교체한다. id가 없으면 False."""
        record = self._records.get(operation_id)
        if record is None:
            return False
        self._records[operation_id] = dataclasses.replace(record, **changes)  # type: ignore[type-var]
        return True

    def all(self) -> list[T]:
        return list(self._records.values())

    def drain(self) -> list[T]:
        """모든 레코드를 꺼내고 저장소를 비운다."""
        records, self._records = self._records, {}
        return list(records.values())

    def clear(self) -> None:
        self._records = {}

    def __len__(self) -> int:
        return len(self._records)


@dataclass
class RunStores:
    """한 실행의 네 가지 작업 저장소."""

    cache: OperationStore[Any] = field(default_factory=OperationStore)
    docker: OperationStore[Any] = field(default_factory=OperationStore)
    api: OperationStore[Any] = field(default_factory=OperationStore)
    failures: OperationStore[Any] = field(default_factory=OperationStore)

    def clear(self) -> None:
        for store in (self.cache, self.docker, self.api, self.failures):
            store.clear()

    def pending(self) -> dict[str, int]:
        return {
            "cache": len(self.cache),
            "docker": len(self.docker),
            "api": len(self.api),
            "failures": len(self.failures),
        }
