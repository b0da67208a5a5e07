"""Gateway データモデル

ワーカーのランタイム状態・状態遷移表・ツールルートを定義する。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from mcp.types import Tool

from .config import NAMESPACE_SEPARATOR, WorkerConfig


class WorkerStatus(StrEnum):
    """ワーカーの状態"""

    INACTIVE = "inactive"  # 停止
    ACTIVATING = "activating"  # 起動中
    ACTIVE = "active"  # 稼働中
    ERROR = "error"  # 起動失敗またはクラッシュ


# 許可される状態遷移
#
# INACTIVE/ERROR -> ACTIVATING (activate)
# ACTIVATING -> ACTIVE / ERROR (起動成功 / 失敗)
# ACTIVE -> INACTIVE (deactivate)
# ACTIVE -> ERROR (クラッシュ)
# ERROR -> INACTIVE (deactivate)
ALLOWED_TRANSITIONS: dict[WorkerStatus, frozenset[WorkerStatus]] = {
    WorkerStatus.INACTIVE: frozenset({WorkerStatus.ACTIVATING}),
    WorkerStatus.ACTIVATING: frozenset({WorkerStatus.ACTIVE, WorkerStatus.ERROR}),
    WorkerStatus.ACTIVE: frozenset({WorkerStatus.INACTIVE, WorkerStatus.ERROR}),
    WorkerStatus.ERROR: frozenset({WorkerStatus.ACTIVATING, WorkerStatus.INACTIVE}),
}


def can_transition(from_status: WorkerStatus, to_status: WorkerStatus) -> bool:
    """指定の遷移が許可されているか"""
    return to_status in ALLOWED_TRANSITIONS[from_status]


@dataclass
class WorkerState:
    """ワーカーのランタイム状態

    設定済みワーカー1つにつき1つ存在し、removeされるまで保持される。
    toolsはACTIVEの間だけ空でない。
    """

    config: WorkerConfig
    status: WorkerStatus = WorkerStatus.INACTIVE
    tools: list[Tool] = field(default_factory=list)
    activated_at: datetime | None = None
    last_error: str | None = None

    @property
    def name(self) -> str:
        return self.config.name

    def uptime_seconds(self, now: datetime | None = None) -> int | None:
        """稼働秒数（ACTIVEでない場合はNone）"""
        if self.activated_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return round((now - self.activated_at).total_seconds())


@dataclass(frozen=True)
class ToolRoute:
    """名前空間付きツール名からワーカーへのルート"""

    worker: str
    original_name: str

    @property
    def namespaced_name(self) -> str:
        return namespaced(self.worker, self.original_name)


def namespaced(worker: str, tool_name: str) -> str:
    """ワーカー名を前置した公開ツール名"""
    return f"{worker}{NAMESPACE_SEPARATOR}{tool_name}"


def split_namespaced(name: str) -> tuple[str, str] | None:
    """公開ツール名を (ワーカー名, 元のツール名) に分解

    ワーカー名は区切り文字を含まないため、最初の区切り文字で分割する。
    """
    worker, sep, tool_name = name.partition(NAMESPACE_SEPARATOR)
    if not sep or not worker or not tool_name:
        return None
    return worker, tool_name
