"""管理ツールハンドラー

管理ツール名に応じてSupervisor / Routerへディスパッチする。
"""

from __future__ import annotations

import logging
from typing import Any

from mcp.types import CallToolResult

from ..core.errors import GatewayError, MissingArgumentError
from ..worker.supervisor import WorkerSupervisor
from .router import CallRouter
from .tools import MANAGEMENT_TOOL_NAMES

logger = logging.getLogger(__name__)


class ManagementHandlers:
    """管理ツールハンドラー"""

    def __init__(self, supervisor: WorkerSupervisor, router: CallRouter):
        self._supervisor = supervisor
        self._router = router

    @staticmethod
    def is_management_tool(name: str) -> bool:
        return name in MANAGEMENT_TOOL_NAMES

    async def dispatch(self, name: str, arguments: dict[str, Any] | None) -> CallToolResult:
        """管理ツールを実行"""
        args = arguments or {}
        try:
            if name == "services":
                return self._supervisor.services()
            elif name == "activate":
                return await self._supervisor.activate(_require_str(args, "name", name))
            elif name == "deactivate":
                return await self._supervisor.deactivate(_require_str(args, "name", name))
            elif name == "reload":
                return await self._supervisor.reload(_require_str(args, "name", name))
            elif name == "restart":
                return await self._supervisor.restart(_require_str(args, "name", name))
            elif name == "health":
                return await self._supervisor.health()
            elif name == "add":
                return await self.handle_add(args)
            elif name == "remove":
                return await self._supervisor.remove(_require_str(args, "name", name))
            elif name == "call":
                return await self.handle_call(args)
            else:
                return GatewayError(f"Unknown management tool: {name}").to_result()
        except GatewayError as e:
            return e.to_result()

    async def handle_add(self, args: dict[str, Any]) -> CallToolResult:
        """add: ワーカー定義を追加"""
        name = _require_str(args, "name", "add")
        command = _require_str(args, "command", "add")

        cmd_args = args.get("args")
        if cmd_args is not None and (
            not isinstance(cmd_args, list) or not all(isinstance(a, str) for a in cmd_args)
        ):
            raise GatewayError("Invalid argument 'args' for add: expected an array of strings")

        env = args.get("env")
        if env is not None:
            if not isinstance(env, dict):
                raise GatewayError("Invalid argument 'env' for add: expected an object")
            env = {str(k): str(v) for k, v in env.items()}

        timeout = args.get("timeout")
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, int | float):
                raise GatewayError("Invalid argument 'timeout' for add: expected a number")
            timeout = int(timeout)

        return await self._supervisor.add(name, command, cmd_args, env, timeout)

    async def handle_call(self, args: dict[str, Any]) -> CallToolResult:
        """call: ワーカー名とツール名を指定して転送"""
        service = args.get("service")
        tool = args.get("tool")
        if not service or not tool or not isinstance(service, str) or not isinstance(tool, str):
            missing = "service" if not service else "tool"
            raise MissingArgumentError(
                missing, "call", message="Both 'service' and 'tool' are required"
            )

        tool_args = args.get("args")
        if tool_args is None:
            tool_args = {}
        elif not isinstance(tool_args, dict):
            raise GatewayError("Invalid argument 'args' for call: expected an object")

        return await self._router.call(service, tool, tool_args)


def _require_str(args: dict[str, Any], key: str, tool: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value:
        raise MissingArgumentError(key, tool)
    return value
