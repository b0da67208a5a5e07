"""MCP Gateway Server

Model Context Protocol (MCP) サーバー実装。
1つのstdio接続で複数のワーカーMCPサーバーを束ね、
管理ツールとワーカーのツール（名前空間付き）を公開する。
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

from mcp import types
from mcp.server import InitializationOptions, Server
from mcp.server.session import ServerSession
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, ServerCapabilities, Tool, ToolsCapability

from ..core import ConfigStore, GatewaySettings, ToolRegistry, get_settings
from ..core.config import WorkerConfig
from ..core.results import error_result
from ..worker.supervisor import SessionFactory, WorkerSupervisor
from .management import ManagementHandlers
from .router import CallRouter
from .tools import get_management_tools

logger = logging.getLogger(__name__)


class GatewayMCPServer:
    """MCP Gateway Server

    提供ツール:
    - 管理ツール: services, activate, deactivate, reload, restart, health, add, remove, call
    - ワーカーのツール: "{worker}_{tool}" 形式で公開（ACTIVEなワーカーのみ）
    """

    def __init__(
        self,
        configs: list[WorkerConfig],
        *,
        store: ConfigStore | None = None,
        settings: GatewaySettings | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.settings = settings or get_settings()
        self.server = Server(self.settings.server.name)
        self.registry = ToolRegistry()
        self.supervisor = WorkerSupervisor(
            configs,
            self.registry,
            on_tools_changed=self._on_tools_changed,
            store=store,
            session_factory=session_factory,
            disconnect_timeout=self.settings.session.disconnect_timeout_seconds,
        )
        self.router = CallRouter(self.supervisor)
        self.management = ManagementHandlers(self.supervisor, self.router)

        self._client_session: ServerSession | None = None
        self._pending_notifications: set[asyncio.Task[None]] = set()

        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """MCPハンドラーを設定"""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """利用可能なツール一覧"""
            self._bind_client_session()
            return self.list_tools()

        async def call_tool(req: types.CallToolRequest) -> types.ServerResult:
            self._bind_client_session()
            result = await self.call_tool(req.params.name, req.params.arguments)
            return types.ServerResult(result)

        # 引数検証と出力スキーマ検証はワーカー側に任せるため、デコレーターを介さず登録する
        self.server.request_handlers[types.CallToolRequest] = call_tool

    def list_tools(self) -> list[Tool]:
        """管理ツール + ACTIVEなワーカーのツール"""
        return [*get_management_tools(), *self.registry.all_tools()]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> CallToolResult:
        """ツールを実行（例外は送出せずエラー結果で返す）"""
        try:
            if self.management.is_management_tool(name):
                return await self.management.dispatch(name, arguments)
            return await self.router.route(name, arguments)
        except Exception as e:
            logger.exception("MCP tool execution error: %s", name)
            return error_result(f"Error: {type(e).__name__}: {e}")

    async def auto_activate(self) -> None:
        """autoActivate指定のワーカーを並行して起動"""
        names = [s.name for s in self.supervisor.get_all_states() if s.config.auto_activate]
        if not names:
            return

        logger.info(f"自動起動: {', '.join(names)}")
        results = await asyncio.gather(
            *(self.supervisor.activate(name) for name in names), return_exceptions=True
        )
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(f"{name} の自動起動に失敗しました: {result!r}")
            elif result.isError:
                logger.error(f"{name} の自動起動に失敗しました")

    async def shutdown(self) -> None:
        """全ワーカーを停止し、保留中の通知を破棄"""
        await self.supervisor.shutdown()
        for task in list(self._pending_notifications):
            task.cancel()
        if self._pending_notifications:
            await asyncio.gather(*self._pending_notifications, return_exceptions=True)

    async def run(self) -> None:  # pragma: no cover
        """サーバーを起動

        入力ストリームの終端、またはSIGINT/SIGTERMで停止する。
        """
        init_options = InitializationOptions(
            server_name=self.settings.server.name,
            server_version=self.settings.server.version,
            capabilities=ServerCapabilities(
                tools=ToolsCapability(listChanged=True),
            ),
        )

        stop = asyncio.Event()
        self._install_signal_handlers(stop)
        self.supervisor.start()

        async with stdio_server() as (read_stream, write_stream):
            serve = asyncio.create_task(
                self.server.run(read_stream, write_stream, init_options), name="gateway:serve"
            )
            stopped = asyncio.create_task(stop.wait(), name="gateway:stop")
            activation = asyncio.create_task(self.auto_activate(), name="gateway:auto-activate")
            try:
                await asyncio.wait({serve, stopped}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (activation, stopped, serve):
                    task.cancel()
                await asyncio.gather(activation, stopped, serve, return_exceptions=True)
                await self.shutdown()
        logger.info("Gatewayを停止しました")

    def _install_signal_handlers(self, stop: asyncio.Event) -> None:  # pragma: no cover
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                # Windowsではループのシグナルハンドラーが使えない
                logger.debug(f"シグナルハンドラーを登録できません: {sig!r}")

    def _bind_client_session(self) -> None:
        """通知の送信先として現在のクライアントセッションを記録"""
        try:
            self._client_session = self.server.request_context.session
        except LookupError:
            pass

    def _on_tools_changed(self) -> None:
        """ツール一覧の変更をクライアントへ通知（接続前は何もしない）"""
        session = self._client_session
        if session is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._notify_tools_changed(session))
        except RuntimeError:
            logger.debug("イベントループ外のためツール一覧変更を通知しません")
            return
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _notify_tools_changed(self, session: ServerSession) -> None:
        try:
            await session.send_tool_list_changed()
        except Exception as e:
            logger.warning(f"ツール一覧変更の通知に失敗しました: {type(e).__name__}: {e}")


def main():  # pragma: no cover
    """エントリーポイント"""
    from ..cli import main as cli_main

    cli_main(["serve"])


if __name__ == "__main__":  # pragma: no cover
    main()
