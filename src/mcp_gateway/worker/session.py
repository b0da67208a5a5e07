"""Worker セッション

ワーカープロセス1つと、そのstdio上のMCPクライアントセッションを表す。

stdio_client / ClientSession のコンテキストはセッション専用のバックグラウンド
タスク内で開始・終了する（anyioのキャンセルスコープは同じタスクで閉じる必要がある）。
ワーカーからの受信ストリームは中継タスクを経由してClientSessionに渡し、
ストリームが終端に達したら予期しない終了として SessionClosed を通知する。
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Any

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import CallToolResult, Tool
from ulid import ULID

from ..core.config import WorkerConfig
from ..core.env import build_child_env
from ..core.errors import WorkerConnectionError

logger = logging.getLogger(__name__)

DEFAULT_DISCONNECT_TIMEOUT = 5.0


@dataclass(frozen=True)
class SessionClosed:
    """ワーカーのチャネルが予期せず閉じたことを示すイベント"""

    worker: str
    session_id: str


class WorkerSession:
    """ワーカーセッション

    使用例:
        session = WorkerSession(config, events)
        tools = await session.connect()
        result = await session.call_tool("echo", {"text": "hi"})
        await session.disconnect()

    connect() が失敗した場合も、呼び出し側が disconnect() で後始末する。
    """

    def __init__(
        self,
        config: WorkerConfig,
        events: asyncio.Queue[SessionClosed] | None = None,
        *,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        self.config = config
        self.session_id = str(ULID())
        self._events = events
        self._disconnect_timeout = disconnect_timeout
        self._session: ClientSession | None = None
        self._tools: list[Tool] = []
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._shutdown = asyncio.Event()
        self._closed = asyncio.Event()
        self._closing = False
        self._detached = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def pid(self) -> int | None:
        """ワーカープロセスID

        stdioクライアントは子プロセスを公開しないため常にNone。
        """
        return None

    @property
    def tools(self) -> list[Tool]:
        """最後に取得したツール一覧"""
        return self._tools

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    def detach(self) -> None:
        """以後の予期しない終了通知を止める（意図的な停止の前に呼ぶ）"""
        self._detached = True

    async def connect(self) -> list[Tool]:
        """ワーカーを起動してハンドシェイクし、ツール一覧を取得

        Raises:
            WorkerConnectionError: 起動・ハンドシェイク・ツール取得の失敗、またはタイムアウト
        """
        if self._task is not None:
            raise RuntimeError(f"Session for {self.name} is already started")

        self._task = asyncio.create_task(self._run(), name=f"worker-session:{self.name}")
        ready_waiter = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait(
                {ready_waiter, self._task},
                timeout=self.config.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready_waiter.cancel()

        if self._ready.is_set():
            return self._tools
        if self._task.done():
            raise WorkerConnectionError(self.name, self._failure_cause(self._task))
        raise WorkerConnectionError(
            self.name, f"connection timed out after {self.config.timeout}ms"
        )

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> CallToolResult:
        """ツール呼び出しをそのまま転送

        Gateway側ではタイムアウトを設けない（長時間実行のツールがあるため）。
        呼び出し中にチャネルが閉じた場合は ConnectionError を送出する。
        """
        session = self._session
        if session is None:
            raise RuntimeError(f"Session for {self.name} is not connected")

        call = asyncio.ensure_future(session.call_tool(name, arguments or {}))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({call, closed}, return_when=asyncio.FIRST_COMPLETED)
            if call in done:
                return call.result()
            raise ConnectionError("the channel closed mid-call")
        finally:
            closed.cancel()
            call.cancel()

    async def ping(self) -> bool:
        """死活確認（失敗は全てFalse）"""
        session = self._session
        if session is None:
            return False
        try:
            await asyncio.wait_for(session.send_ping(), timeout=self.config.timeout_seconds)
            return True
        except Exception as e:
            logger.debug(f"{self.name} ping失敗: {type(e).__name__}: {e}")
            return False

    async def disconnect(self) -> None:
        """ワーカープロセスを停止してチャネルを解放（エラーは無視）"""
        self._closing = True
        self._shutdown.set()

        task = self._task
        if task is None or task.done():
            self._session = None
            return

        try:
            if not self._ready.is_set():
                # ハンドシェイク中はshutdownを待たないため即キャンセル
                task.cancel()
            done, _ = await asyncio.wait({task}, timeout=self._disconnect_timeout)
            if not done:
                logger.warning(f"{self.name} の停止がタイムアウトしたためキャンセルします")
                task.cancel()
                await asyncio.wait({task}, timeout=self._disconnect_timeout)
            if task.done() and not task.cancelled() and task.exception() is not None:
                logger.debug(f"{self.name} 停止時のエラーを無視: {task.exception()}")
        except Exception as e:
            logger.debug(f"{self.name} 停止時のエラーを無視: {e}")
        finally:
            self._session = None

    async def _run(self) -> None:
        """セッション本体（専用タスク）"""
        params = StdioServerParameters(
            command=self.config.command,
            args=list(self.config.args),
            env=build_child_env(self.config.env),
        )
        try:
            async with stdio_client(params, errlog=sys.stderr) as (read_stream, write_stream):
                relay_send, relay_recv = anyio.create_memory_object_stream(0)
                async with anyio.create_task_group() as tg:
                    tg.start_soon(self._relay, read_stream, relay_send, tg.cancel_scope)
                    async with ClientSession(relay_recv, write_stream) as session:
                        await session.initialize()
                        self._tools = await self._fetch_tools(session)
                        self._session = session
                        self._ready.set()
                        logger.debug(f"{self.name} 接続完了 (session={self.session_id})")
                        await self._shutdown.wait()
                    tg.cancel_scope.cancel()
        except Exception as e:
            if not self._ready.is_set():
                raise
            logger.debug(f"{self.name} セッション終了時のエラー: {type(e).__name__}: {e}")
        finally:
            self._session = None
            self._closed.set()
            if self._ready.is_set() and not (self._closing or self._detached):
                self._notify_closed()

    async def _relay(self, source: Any, sink: Any, scope: anyio.CancelScope) -> None:
        """ワーカーからの受信を中継し、終端に達したらセッションを畳む"""
        async with sink:
            try:
                async for message in source:
                    await sink.send(message)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                pass
        if not self._closing:
            logger.debug(f"{self.name} の受信ストリームが終了しました")
        scope.cancel()

    async def _fetch_tools(self, session: ClientSession) -> list[Tool]:
        """ツール一覧を全ページ取得"""
        result = await session.list_tools()
        tools = list(result.tools)
        seen_cursors: set[str] = set()
        while result.nextCursor and result.nextCursor not in seen_cursors:
            seen_cursors.add(result.nextCursor)
            result = await session.list_tools(result.nextCursor)
            tools.extend(result.tools)
        return tools

    def _notify_closed(self) -> None:
        logger.warning(f"{self.name} のプロセスが予期せず終了しました")
        if self._events is not None:
            self._events.put_nowait(SessionClosed(worker=self.name, session_id=self.session_id))

    @staticmethod
    def _failure_cause(task: asyncio.Task[None]) -> str:
        if task.cancelled():
            return "connection cancelled"
        exc: BaseException | None = task.exception()
        if exc is None:
            return "connection closed during handshake"
        while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
            exc = exc.exceptions[0]
        message = str(exc)
        return f"{type(exc).__name__}: {message}" if message else type(exc).__name__
