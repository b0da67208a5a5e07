"""ツールレジストリ

名前空間付きツール名 "{worker}_{tool}" から (ワーカー, 元のツール名) への対応表。
ACTIVEなワーカーのツールだけを保持する。排他制御は呼び出し側（Supervisor）が行う。
"""

from __future__ import annotations

import logging

from mcp.types import Tool

from .models import ToolRoute

logger = logging.getLogger(__name__)


class ToolRegistry:
    """ツールレジストリ"""

    def __init__(self) -> None:
        self._routes: dict[str, ToolRoute] = {}
        self._worker_tools: dict[str, list[Tool]] = {}

    def register_worker(self, worker: str, tools: list[Tool]) -> list[Tool]:
        """ワーカーのツールを登録

        Args:
            worker: ワーカー名
            tools: ワーカーのツール一覧（元の名前）

        Returns:
            名前空間付きのツール一覧

        Raises:
            ValueError: 既に登録済みのワーカー、または名前が衝突する場合
        """
        if worker in self._worker_tools:
            raise ValueError(f"Service already registered: {worker}")

        routes: dict[str, ToolRoute] = {}
        prefixed: list[Tool] = []
        for tool in tools:
            route = ToolRoute(worker=worker, original_name=tool.name)
            name = route.namespaced_name
            if name in routes or name in self._routes:
                raise ValueError(f"Tool name collision: {name}")
            routes[name] = route
            prefixed.append(tool.model_copy(update={"name": name}))

        # 検証が済んでからまとめて反映
        self._routes.update(routes)
        self._worker_tools[worker] = prefixed
        logger.debug(f"ツール登録: {worker} ({len(prefixed)}件)")
        return prefixed

    def unregister_worker(self, worker: str) -> None:
        """ワーカーのツールを全て削除（未登録なら何もしない）"""
        tools = self._worker_tools.pop(worker, None)
        if tools is None:
            return
        for tool in tools:
            self._routes.pop(tool.name, None)
        logger.debug(f"ツール削除: {worker} ({len(tools)}件)")

    def resolve(self, name: str) -> ToolRoute | None:
        """名前空間付きツール名を解決"""
        return self._routes.get(name)

    def all_tools(self) -> list[Tool]:
        """登録済みの全ツール（名前空間付き）"""
        return [tool for tools in self._worker_tools.values() for tool in tools]

    def worker_tool_count(self, worker: str) -> int:
        return len(self._worker_tools.get(worker, []))

    def is_registered(self, worker: str) -> bool:
        return worker in self._worker_tools

    def __contains__(self, name: str) -> bool:
        return name in self._routes

    def __len__(self) -> int:
        return len(self._routes)
