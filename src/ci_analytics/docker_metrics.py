"""컨테이너 작업 수집기 (pull, run, exec, tool-install)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ci_analytics.collector import (
    BaseCollector,
    CollectionContext,
    duration_ms,
    new_operation_id,
    utc_now,
)
from ci_analytics.models import DockerMetrics
from ci_analytics.store import OperationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DockerOperation:
    operation: str
    start_time: datetime
    image: str | None = None
    container_id: str | None = None
    tool: str | None = None
    tool_version: str | None = None
    end_time: datetime | None = None
    success: bool | None = None
    exit_code: int | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None


def _subject(image: str | None, tool: str | None) -> str:
    return tool or image or "container"


def record_operation_start(
    store: OperationStore[DockerOperation],
    operation: str,
    *,
    image: str | None = None,
    container_id: str | None = None,
    tool: str | None = None,
    tool_version: str | None = None,
    metadata: dict[str, Any] | None = None,
    operation_id: str | None = None,
    now: datetime | None = None,
) -> str:
    op_id = operation_id or new_operation_id(operation, _subject(image, tool))
    store.add(
        op_id,
        DockerOperation(
            operation=operation,
            start_time=now or utc_now(),
            image=image,
            container_id=container_id,
            tool=tool,
            tool_version=tool_version,
            metadata=metadata,
        ),
    )
    return op_id


def record_operation_end(
    store: OperationStore[DockerOperation],
    operation_id: str,
    *,
    success: bool,
    exit_code: int | None = None,
    error: str | None = None,
    container_id: str | None = None,
    now: datetime | None = None,
) -> bool:
    changes: dict[str, Any] = {
        "end_time": now or utc_now(),
        "success": success,
        "exit_code": exit_code,
        "error": error,
    }
    if container_id is not None:
        changes["container_id"] = container_id

    if not store.update(operation_id, **changes):
        logger.warning(
            "Unknown docker operation id: %s",
            operation_id,
            extra={"event_code": "UNKNOWN_OPERATION", "component": "docker"},
        )
        return False
    return True


def record_operation(
    store: OperationStore[DockerOperation],
    operation: str,
    *,
    start_time: datetime,
    end_time: datetime,
    success: bool,
    image: str | None = None,
    container_id: str | None = None,
    tool: str | None = None,
    tool_version: str | None = None,
    exit_code: int | None = None,
    error: str | None = None,
    metadata: dict[str, Any] | None = None,
    operation_id: str | None = None,
) -> str:
    op_id = operation_id or new_operation_id(operation, _subject(image, tool))
    store.add(
        op_id,
        DockerOperation(
            operation=operation,
            start_time=start_time,
            end_time=end_time,
            success=success,
            image=image,
            container_id=container_id,
            tool=tool,
            tool_version=tool_version,
            exit_code=exit_code,
            error=error,
            metadata=metadata,
        ),
    )
    return op_id


def record_tool_installation(
    store: OperationStore[DockerOperation],
    tool: str,
    tool_version: str,
    *,
    start_time: datetime,
    end_time: datetime,
    success: bool,
    error: str | None = None,
) -> str:
    """도구 설치 스크립트 실행 결과를 기록한다. exit code는 성공 여부로 결정된다."""
    return record_operation(
        store,
        "tool-install",
        start_time=start_time,
        end_time=end_time,
        success=success,
        tool=tool,
        tool_version=tool_version,
        exit_code=0 if success else 1,
        error=error,
        metadata={"installationType": "script"},
    )


def record_image_pull(
    store: OperationStore[DockerOperation],
    image: str,
    *,
    start_time: datetime,
    end_time: datetime,
    success: bool,
    error: str | None = None,
) -> str:
    return record_operation(
        store,
        "pull",
        start_time=start_time,
        end_time=end_time,
        success=success,
        image=image,
        error=error,
        metadata={"pullType": "docker"},
    )


def success_rate(
    store: OperationStore[DockerOperation],
    operation: str | None = None,
) -> float:
    """완료된 작업 중 성공 비율(%)."""
    done = [
        op
        for op in store.all()
        if op.success is not None and (operation is None or op.operation == operation)
    ]
    if not done:
        return 0.0
    return float(round(sum(1 for op in done if op.success) / len(done) * 100))


class DockerMetricsCollector(BaseCollector[DockerOperation, DockerMetrics]):
    metric_type = "docker"

    def transform(self, record: DockerOperation, context: CollectionContext) -> DockerMetrics:
        end_time = record.end_time or utc_now()
        error = record.error
        if record.end_time is None and error is None:
            error = "operation did not complete"
        return DockerMetrics(
            operation=record.operation,  # type: ignore[arg-type]
            image=record.image,
            container_id=record.container_id,
            tool=record.tool,
            tool_version=record.tool_version,
            start_time=record.start_time,
            end_time=end_time,
            duration=duration_ms(record.start_time, end_time),
            success=bool(record.success),
            exit_code=record.exit_code,
            error=self.scrub(error),
            metadata=self.sanitize_mapping(record.metadata),
        )
