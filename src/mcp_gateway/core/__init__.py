"""Gateway Core モジュール

Gatewayのバックエンドロジックを提供:
- Config: 設定管理とワーカー定義ストア
- Models: ワーカー状態と状態遷移
- Registry: 名前空間付きツールの対応表
- Errors / Results: エラー分類と統一結果形式
"""

from .config import (
    GatewayConfig,
    GatewaySettings,
    WorkerConfig,
    get_settings,
    reload_settings,
)
from .errors import (
    ConfigStoreError,
    CrashError,
    DuplicateWorkerError,
    GatewayError,
    MissingArgumentError,
    RoutingError,
    TransitionError,
    UnknownWorkerError,
    WorkerCallError,
    WorkerConnectionError,
)
from .models import ToolRoute, WorkerState, WorkerStatus, namespaced
from .registry import ToolRegistry
from .results import error_result, result_text, text_result
from .store import ConfigStore

__all__ = [
    # Config
    "get_settings",
    "reload_settings",
    "GatewaySettings",
    "GatewayConfig",
    "WorkerConfig",
    "ConfigStore",
    # Models
    "WorkerState",
    "WorkerStatus",
    "ToolRoute",
    "namespaced",
    "ToolRegistry",
    # Errors
    "GatewayError",
    "UnknownWorkerError",
    "WorkerConnectionError",
    "CrashError",
    "MissingArgumentError",
    "DuplicateWorkerError",
    "RoutingError",
    "WorkerCallError",
    "ConfigStoreError",
    "TransitionError",
    # Results
    "text_result",
    "error_result",
    "result_text",
]
