"""Gateway モジュール

MCPサーバーとしての外側のディスパッチ層:
- Server: stdio上のMCPサーバー、ツール一覧の公開と変更通知
- Router: 名前空間付きツール呼び出しの転送
- Management: 管理ツールの定義とディスパッチ
"""

from .management import ManagementHandlers
from .router import CallRouter
from .server import GatewayMCPServer, main
from .tools import MANAGEMENT_TOOL_NAMES, get_management_tools

__all__ = [
    "GatewayMCPServer",
    "CallRouter",
    "ManagementHandlers",
    "MANAGEMENT_TOOL_NAMES",
    "get_management_tools",
    "main",
]
