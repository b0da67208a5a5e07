"""Gateway エラー分類

公開操作は例外を送出せず、to_result() でエラーフラグ付きの結果に変換して返す。
"""

from __future__ import annotations

from mcp.types import CallToolResult

from .results import error_result


class GatewayError(Exception):
    """Gatewayエラー基底クラス"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_result(self) -> CallToolResult:
        """エラーフラグ付きの結果に変換"""
        return error_result(self.message)


class UnknownWorkerError(GatewayError):
    """未設定のワーカー名"""

    def __init__(self, name: str):
        super().__init__(f"Unknown service: {name}")
        self.name = name


class WorkerConnectionError(GatewayError):
    """起動・ハンドシェイク・ツール一覧取得の失敗"""

    def __init__(self, name: str, cause: str):
        super().__init__(f"Failed to activate {name}: {cause}")
        self.name = name
        self.cause = cause


class CrashError(GatewayError):
    """ACTIVE中のワーカーが予期せず終了した"""

    REASON = "process exited unexpectedly"

    def __init__(self, name: str):
        super().__init__(f"{name}: {self.REASON}")
        self.name = name


class MissingArgumentError(GatewayError):
    """管理ツールの必須引数が欠けている"""

    def __init__(self, argument: str, tool: str, message: str | None = None):
        super().__init__(message or f"Missing required argument '{argument}' for {tool}")
        self.argument = argument
        self.tool = tool


class DuplicateWorkerError(GatewayError):
    """既存のワーカー名でaddした"""

    def __init__(self, name: str):
        super().__init__(f"Service already exists: {name}")
        self.name = name


class RoutingError(GatewayError):
    """解決できないツール名、または到達できないワーカー"""

    @classmethod
    def unknown_tool(cls, name: str) -> RoutingError:
        return cls(f"Unknown tool: {name}")

    @classmethod
    def no_session(cls, worker: str) -> RoutingError:
        return cls(f'No connection for service "{worker}"')


class WorkerCallError(GatewayError):
    """転送したツール呼び出しがワーカー側で失敗した"""

    def __init__(self, worker: str, tool: str, cause: str):
        super().__init__(f"Tool call failed ({worker}/{tool}): {cause}")
        self.worker = worker
        self.tool = tool
        self.cause = cause


class ConfigStoreError(GatewayError):
    """設定ファイルの読み書き失敗"""


class TransitionError(GatewayError):
    """不正な状態遷移"""
