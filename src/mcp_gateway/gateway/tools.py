"""管理ツール定義

Gateway自身が公開する管理ツールのスキーマ定義。
"""

from mcp.types import Tool


def _name_schema(description: str) -> dict:
    return {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": description},
        },
        "required": ["name"],
    }


def get_management_tools() -> list[Tool]:
    """管理ツール一覧を取得"""
    return [
        Tool(
            name="services",
            description="List all registered services with their status, tool count, and uptime",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="activate",
            description="Activate a service: spawn its process, load its tools",
            inputSchema=_name_schema("Service name to activate"),
        ),
        Tool(
            name="deactivate",
            description="Deactivate a service: stop its process, remove its tools",
            inputSchema=_name_schema("Service name to deactivate"),
        ),
        Tool(
            name="reload",
            description="Reload a service: disconnect and reconnect (picks up code changes)",
            inputSchema=_name_schema("Service name to reload"),
        ),
        Tool(
            name="restart",
            description="Restart a service: kill process and respawn",
            inputSchema=_name_schema("Service name to restart"),
        ),
        Tool(
            name="health",
            description="Check health of all active services via ping",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="add",
            description=(
                "Add a new MCP service to the gateway config. "
                "Supports npx, uvx, python, node, ssh, etc."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Unique service name (must not contain '_')",
                    },
                    "command": {
                        "type": "string",
                        "description": "Command to run (e.g. npx, uvx, python, node, ssh)",
                    },
                    "args": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Command arguments",
                    },
                    "env": {
                        "type": "object",
                        "description": "Environment variables (${VAR} references are expanded)",
                    },
                    "timeout": {
                        "type": "number",
                        "description": "Connection timeout in ms (default: 30000)",
                    },
                },
                "required": ["name", "command"],
            },
        ),
        Tool(
            name="remove",
            description="Remove an MCP service from the gateway config",
            inputSchema=_name_schema("Service name to remove"),
        ),
        Tool(
            name="call",
            description=(
                "Call any tool on any service, activating it first if needed. "
                "Use activate to see available tools and their schemas."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "service": {"type": "string", "description": "Service name"},
                    "tool": {"type": "string", "description": "Tool name within the service"},
                    "args": {"type": "object", "description": "Tool arguments"},
                },
                "required": ["service", "tool"],
            },
        ),
    ]


MANAGEMENT_TOOL_NAMES = frozenset(tool.name for tool in get_management_tools())
