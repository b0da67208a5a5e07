"""Call Router

名前空間付きツール名をレジストリで解決し、対象ワーカーのセッションへ転送する。
ワーカーが稼働していなければ呼び出し時に自動でactivateする。
"""

from __future__ import annotations

import logging
from typing import Any

from mcp.types import CallToolResult

from ..core.errors import RoutingError, UnknownWorkerError, WorkerCallError
from ..core.models import WorkerStatus, split_namespaced
from ..worker.supervisor import SessionLike, WorkerSupervisor

logger = logging.getLogger(__name__)


class CallRouter:
    """Call Router"""

    def __init__(self, supervisor: WorkerSupervisor):
        self._supervisor = supervisor

    async def route(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        """名前空間付きツールを呼び出す

        Args:
            name: "{worker}_{tool}" 形式のツール名
            arguments: ツール引数（検証せずにそのまま転送）
        """
        registry = self._supervisor.registry
        route = registry.resolve(name)

        if route is None:
            # 未稼働ワーカーのツールはレジストリに無いため、接頭辞からワーカーを特定する
            worker = self._inactive_worker_for(name)
            if worker is None:
                return RoutingError.unknown_tool(name).to_result()
            activation = await self._supervisor.activate(worker)
            if activation.isError:
                return activation
            route = registry.resolve(name)
            if route is None:
                # 存在しないツール名のための起動は取り消す
                logger.info(f"{name} が見つからないため {worker} の自動起動を取り消します")
                await self._supervisor.deactivate(worker)
                return RoutingError.unknown_tool(name).to_result()

        session = self._supervisor.get_session(route.worker)
        if session is None:
            activation = await self._supervisor.activate(route.worker)
            if activation.isError:
                return activation
            session = self._supervisor.get_session(route.worker)
            if session is None:
                return RoutingError.no_session(route.worker).to_result()

        return await self._forward(route.worker, session, route.original_name, arguments)

    async def call(
        self, service: str, tool: str, arguments: dict[str, Any] | None = None
    ) -> CallToolResult:
        """ワーカー名（名前空間なし）とツール名を指定して呼び出す"""
        state = self._supervisor.get_state(service)
        if state is None:
            return UnknownWorkerError(service).to_result()

        if state.status != WorkerStatus.ACTIVE:
            activation = await self._supervisor.activate(service)
            if activation.isError:
                return activation

        session = self._supervisor.get_session(service)
        if session is None:
            return RoutingError.no_session(service).to_result()

        return await self._forward(service, session, tool, arguments)

    def _inactive_worker_for(self, name: str) -> str | None:
        parsed = split_namespaced(name)
        if parsed is None:
            return None
        state = self._supervisor.get_state(parsed[0])
        if state is None or state.status == WorkerStatus.ACTIVE:
            return None
        return state.name

    async def _forward(
        self,
        worker: str,
        session: SessionLike,
        tool: str,
        arguments: dict[str, Any] | None,
    ) -> CallToolResult:
        logger.debug(f"ツール転送: {worker}/{tool}")
        try:
            return await session.call_tool(tool, arguments or {})
        except Exception as e:
            logger.warning(f"ツール呼び出し失敗 ({worker}/{tool}): {type(e).__name__}: {e}")
            return WorkerCallError(worker, tool, str(e) or type(e).__name__).to_result()
