"""Worker Supervisor

全ワーカーのランタイム状態とライブセッションを所有し、状態機械を適用する。

状態遷移:
- INACTIVE/ERROR -> ACTIVATING (activate)
- ACTIVATING -> ACTIVE (接続・ツール取得・レジストリ登録に成功)
- ACTIVATING -> ERROR (失敗。レジストリには何も残さない)
- ACTIVE -> INACTIVE (deactivate)
- ACTIVE -> ERROR (クラッシュ通知)
- ERROR -> INACTIVE (deactivate)

同じワーカー名に対する操作はワーカー別のロックで直列化し、
異なるワーカーへの操作は並行して進められる。
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Protocol

from mcp.types import CallToolResult, Tool

from ..core.config import GatewayConfig, WorkerConfig
from ..core.errors import (
    ConfigStoreError,
    CrashError,
    DuplicateWorkerError,
    GatewayError,
    TransitionError,
    UnknownWorkerError,
    WorkerConnectionError,
)
from ..core.models import WorkerState, WorkerStatus, can_transition
from ..core.registry import ToolRegistry
from ..core.results import text_result
from ..core.store import ConfigStore
from .session import DEFAULT_DISCONNECT_TIMEOUT, SessionClosed, WorkerSession

logger = logging.getLogger(__name__)


class SessionLike(Protocol):
    """Supervisorが利用するセッションのインターフェース"""

    session_id: str

    @property
    def pid(self) -> int | None: ...

    def detach(self) -> None: ...

    async def connect(self) -> list[Tool]: ...

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> CallToolResult: ...

    async def ping(self) -> bool: ...

    async def disconnect(self) -> None: ...


SessionFactory = Callable[[WorkerConfig, asyncio.Queue[SessionClosed]], SessionLike]


def format_tool_signature(tool: Tool) -> str:
    """ツールを `• name(a: string, b?: number) — 説明` 形式で表示"""
    schema = tool.inputSchema or {}
    properties: dict[str, Any] = schema.get("properties") or {}
    required = set(schema.get("required") or [])
    params = ", ".join(
        f"{key}{'' if key in required else '?'}: {(spec or {}).get('type', 'any')}"
        for key, spec in properties.items()
    )
    description = f" — {tool.description}" if tool.description else ""
    return f"• {tool.name}({params}){description}"


class WorkerSupervisor:
    """Worker Supervisor

    ワーカー状態（WorkerState）とセッションの唯一の書き込み主体。
    公開操作は例外を送出せず、エラーフラグ付きの結果を返す。
    """

    def __init__(
        self,
        configs: list[WorkerConfig],
        registry: ToolRegistry,
        on_tools_changed: Callable[[], None] | None = None,
        *,
        store: ConfigStore | None = None,
        session_factory: SessionFactory | None = None,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        self._registry = registry
        self._on_tools_changed = on_tools_changed
        self._store = store
        self._session_factory: SessionFactory = session_factory or functools.partial(
            WorkerSession, disconnect_timeout=disconnect_timeout
        )
        self._states: dict[str, WorkerState] = {}
        self._sessions: dict[str, SessionLike] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._store_lock = asyncio.Lock()
        self._events: asyncio.Queue[SessionClosed] = asyncio.Queue()
        self._watcher: asyncio.Task[None] | None = None

        for config in configs:
            if config.name in self._states:
                raise ValueError(f"Duplicate service name: {config.name}")
            self._states[config.name] = WorkerState(config=config)

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def get_state(self, name: str) -> WorkerState | None:
        return self._states.get(name)

    def get_all_states(self) -> list[WorkerState]:
        return list(self._states.values())

    def get_session(self, name: str) -> SessionLike | None:
        return self._sessions.get(name)

    def has_worker(self, name: str) -> bool:
        return name in self._states

    # ------------------------------------------------------------------
    # ライフサイクル
    # ------------------------------------------------------------------

    def start(self) -> None:
        """クラッシュ通知の監視タスクを開始"""
        if self._watcher is None or self._watcher.done():
            self._watcher = asyncio.create_task(
                self._watch_events(), name="worker-supervisor:events"
            )

    async def activate(self, name: str) -> CallToolResult:
        """ワーカーを起動してツールを登録"""
        if name not in self._states:
            return UnknownWorkerError(name).to_result()
        self.start()
        async with self._lock_for(name):
            return await self._activate_locked(name)

    async def deactivate(self, name: str) -> CallToolResult:
        """ワーカーを停止してツールを削除"""
        if name not in self._states:
            return UnknownWorkerError(name).to_result()
        async with self._lock_for(name):
            return await self._deactivate_locked(name)

    async def reload(self, name: str) -> CallToolResult:
        """deactivate → activate（deactivateの結果によらずactivateする）"""
        if name not in self._states:
            return UnknownWorkerError(name).to_result()
        self.start()
        async with self._lock_for(name):
            await self._deactivate_locked(name)
            return await self._activate_locked(name)

    async def restart(self, name: str) -> CallToolResult:
        """reloadの別名"""
        return await self.reload(name)

    async def health(self) -> CallToolResult:
        """全ワーカーのヘルスチェック（状態は変更しない）"""
        lines: list[str] = []
        for name, state in list(self._states.items()):
            if state.status != WorkerStatus.ACTIVE:
                error = f" ({state.last_error})" if state.last_error else ""
                lines.append(f"{name}: {state.status}{error}")
                continue

            session = self._sessions.get(name)
            if session is None:
                lines.append(f"{name}: error (no connection)")
                continue

            healthy = await session.ping()
            pid = session.pid if session.pid is not None else "unavailable"
            lines.append(f"{name}: {'healthy' if healthy else 'unhealthy'} (pid: {pid})")

        return text_result("\n".join(lines) if lines else "No services configured")

    def services(self, now: datetime | None = None) -> CallToolResult:
        """全ワーカーの状態一覧"""
        lines: list[str] = []
        for state in self.get_all_states():
            uptime = state.uptime_seconds(now)
            line = (
                f"{state.name}: {state.status} | tools: {len(state.tools)} | "
                f"uptime: {f'{uptime}s' if uptime is not None else '-'}"
            )
            if state.last_error:
                line += f" | error: {state.last_error}"
            lines.append(line)
        return text_result("\n".join(lines) if lines else "No services configured")

    async def shutdown(self) -> None:
        """稼働中の全ワーカーを停止（1つの失敗で中断しない）"""
        for name in list(self._sessions):
            try:
                await self.deactivate(name)
            except Exception:
                logger.exception(f"{name} の停止に失敗しました")

        if self._watcher is not None:
            self._watcher.cancel()
            await asyncio.gather(self._watcher, return_exceptions=True)
            self._watcher = None
        logger.info("全ワーカーを停止しました")

    async def wait_idle(self) -> None:
        """キュー中のクラッシュ通知を全て処理し終えるまで待つ"""
        await self._events.join()

    # ------------------------------------------------------------------
    # ワーカー定義の追加・削除
    # ------------------------------------------------------------------

    async def add(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CallToolResult:
        """ワーカー定義を追加して永続化（自動起動はしない）"""
        if name in self._states:
            return DuplicateWorkerError(name).to_result()

        try:
            fields: dict[str, Any] = {
                "name": name,
                "command": command,
                "args": list(args or []),
                "env": dict(env or {}),
                "auto_activate": False,
            }
            if timeout is not None:
                fields["timeout"] = timeout
            config = WorkerConfig(**fields)
        except ValueError as e:
            return GatewayError(f"Invalid service definition for {name}: {e}").to_result()

        def _append(current: GatewayConfig) -> GatewayConfig:
            if current.get(name) is not None:
                raise DuplicateWorkerError(name)
            return current.with_service(config)

        try:
            async with self._store_lock:
                if name in self._states:
                    raise DuplicateWorkerError(name)
                self._persist(_append)
                self._states[name] = WorkerState(config=config)
        except GatewayError as e:
            return e.to_result()

        command_line = " ".join([config.command, *config.args])
        logger.info(f"{name} を追加しました ({command_line})")
        return text_result(
            f'✓ {name} added ({command_line}). Use activate({{name: "{name}"}}) to start it.'
        )

    async def remove(self, name: str) -> CallToolResult:
        """ワーカーを停止して定義を削除・永続化"""
        if name not in self._states:
            return UnknownWorkerError(name).to_result()

        def _drop(current: GatewayConfig) -> GatewayConfig:
            return current.without_service(name)

        async with self._lock_for(name):
            state = self._states.get(name)
            if state is None:
                return UnknownWorkerError(name).to_result()
            if state.status != WorkerStatus.INACTIVE or name in self._sessions:
                await self._deactivate_locked(name)

            try:
                async with self._store_lock:
                    self._persist(_drop)
                    del self._states[name]
            except GatewayError as e:
                return e.to_result()

        logger.info(f"{name} を削除しました")
        return text_result(f"✓ {name} removed")

    # ------------------------------------------------------------------
    # 内部処理（ワーカー別ロック保持中に呼ぶ）
    # ------------------------------------------------------------------

    async def _activate_locked(self, name: str) -> CallToolResult:
        state = self._states.get(name)
        if state is None:
            return UnknownWorkerError(name).to_result()

        if state.status == WorkerStatus.ACTIVE:
            return text_result(f"{name} is already active ({len(state.tools)} tools)")

        self._transition(state, WorkerStatus.ACTIVATING)
        state.last_error = None

        session = self._session_factory(state.config, self._events)
        try:
            tools = await session.connect()
            prefixed = self._registry.register_worker(name, tools)
        except asyncio.CancelledError:
            session.detach()
            await session.disconnect()
            self._transition(state, WorkerStatus.ERROR)
            state.last_error = "activation cancelled"
            raise
        except Exception as e:
            # 起動途中のプロセスを残さない
            session.detach()
            await session.disconnect()
            error = (
                e if isinstance(e, WorkerConnectionError) else WorkerConnectionError(name, str(e))
            )
            self._transition(state, WorkerStatus.ERROR)
            state.last_error = error.cause or type(e).__name__
            logger.warning(f"{name} の起動に失敗しました: {state.last_error}")
            return WorkerConnectionError(name, state.last_error).to_result()

        self._sessions[name] = session
        self._transition(state, WorkerStatus.ACTIVE)
        state.tools = list(tools)
        state.activated_at = datetime.now(timezone.utc)
        logger.info(f"{name} を起動しました（ツール{len(tools)}件）")
        self._emit_tools_changed()

        lines = [
            f"✓ {name} activated — {len(tools)} tools:",
            "",
            *(format_tool_signature(tool) for tool in tools),
            "",
            f'Use call({{service: "{name}", tool: "<name>", args: {{...}}}}) to call these tools.',
        ]
        if prefixed:
            lines.append(f"Also available as: {', '.join(t.name for t in prefixed)}")
        return text_result("\n".join(lines))

    async def _deactivate_locked(self, name: str) -> CallToolResult:
        state = self._states.get(name)
        if state is None:
            return UnknownWorkerError(name).to_result()

        if state.status == WorkerStatus.INACTIVE and name not in self._sessions:
            return text_result(f"{name} is already inactive")

        was_registered = self._registry.is_registered(name)
        session = self._sessions.pop(name, None)
        if session is not None:
            # クラッシュ通知を止めてから切断する
            session.detach()
            await session.disconnect()

        self._registry.unregister_worker(name)
        if state.status != WorkerStatus.INACTIVE:
            self._transition(state, WorkerStatus.INACTIVE)
        state.tools = []
        state.activated_at = None
        state.last_error = None

        if was_registered:
            self._emit_tools_changed()
        logger.info(f"{name} を停止しました")
        return text_result(f"✓ {name} deactivated")

    async def _handle_session_closed(self, event: SessionClosed) -> None:
        """クラッシュ通知の処理（ACTIVEかつ現行セッションの場合のみ）"""
        name = event.worker
        if name not in self._states:
            return
        async with self._lock_for(name):
            state = self._states.get(name)
            session = self._sessions.get(name)
            if (
                state is None
                or state.status != WorkerStatus.ACTIVE
                or session is None
                or session.session_id != event.session_id
            ):
                logger.debug(f"{name} の終了通知を無視しました (session={event.session_id})")
                return

            self._sessions.pop(name, None)
            self._registry.unregister_worker(name)
            self._transition(state, WorkerStatus.ERROR)
            state.tools = []
            state.activated_at = None
            state.last_error = CrashError.REASON
            logger.warning(f"{name} がクラッシュしたためツールを削除しました")
            self._emit_tools_changed()

        # 終了済みセッションの後始末
        await session.disconnect()

    async def _watch_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handle_session_closed(event)
            except Exception:
                logger.exception(f"{event.worker} の終了通知の処理に失敗しました")
            finally:
                self._events.task_done()

    def _persist(self, mutate: Callable[[GatewayConfig], GatewayConfig]) -> None:
        if self._store is None:
            raise ConfigStoreError("No configuration store is attached")
        self._store.update(mutate)

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    @staticmethod
    def _transition(state: WorkerState, to_status: WorkerStatus) -> None:
        if not can_transition(state.status, to_status):
            raise TransitionError(
                f"Invalid transition for {state.name}: {state.status} -> {to_status}"
            )
        state.status = to_status

    def _emit_tools_changed(self) -> None:
        if self._on_tools_changed is None:
            return
        try:
            self._on_tools_changed()
        except Exception:
            logger.exception("ツール一覧変更の通知に失敗しました")
