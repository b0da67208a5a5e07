"""MCP Gateway テスト設定"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio
from mcp.types import CallToolResult, TextContent, Tool
from ulid import ULID

from mcp_gateway.core import (
    ConfigStore,
    GatewayConfig,
    ToolRegistry,
    WorkerConfig,
    WorkerConnectionError,
)
from mcp_gateway.worker.session import SessionClosed
from mcp_gateway.worker.supervisor import WorkerSupervisor


def make_tool(name: str, description: str | None = None, **properties: str) -> Tool:
    """テスト用のツール定義を作成（properties は 引数名=型）"""
    return Tool(
        name=name,
        description=description,
        inputSchema={
            "type": "object",
            "properties": {key: {"type": value} for key, value in properties.items()},
            "required": list(properties),
        },
    )


class FakeSession:
    """メモリ上で動作するワーカーセッション

    ワーカー名ごとの挙動は FakeWorld に登録する。
    """

    def __init__(self, world: FakeWorld, config: WorkerConfig, events: asyncio.Queue):
        self.world = world
        self.config = config
        self.events = events
        self.session_id = str(ULID())
        self.connected = False
        self.detached = False
        self.disconnect_count = 0
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def pid(self) -> int | None:
        return self.world.pids.get(self.name)

    def detach(self) -> None:
        self.detached = True

    async def connect(self) -> list[Tool]:
        self.world.connect_count[self.name] = self.world.connect_count.get(self.name, 0) + 1
        gate = self.world.gates.get(self.name)
        if gate is not None:
            await gate.wait()
        failure = self.world.failures.get(self.name)
        if failure is not None:
            raise WorkerConnectionError(self.name, failure)
        self.connected = True
        return list(self.world.tools.get(self.name, []))

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        if not self.connected:
            raise RuntimeError(f"Session for {self.name} is not connected")
        self.calls.append((name, arguments or {}))
        error = self.world.call_errors.get(self.name)
        if error is not None:
            raise error
        return CallToolResult(
            content=[TextContent(type="text", text=f"{self.name}:{name}:{arguments or {}}")]
        )

    async def ping(self) -> bool:
        return self.connected and self.name not in self.world.unhealthy

    async def disconnect(self) -> None:
        self.disconnect_count += 1
        self.connected = False

    def crash(self) -> None:
        """予期しない終了を通知"""
        self.connected = False
        self.events.put_nowait(SessionClosed(worker=self.name, session_id=self.session_id))


class FakeWorld:
    """FakeSession の挙動とセッション履歴"""

    def __init__(self):
        self.tools: dict[str, list[Tool]] = {}
        self.failures: dict[str, str] = {}
        self.call_errors: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.unhealthy: set[str] = set()
        self.pids: dict[str, int] = {}
        self.connect_count: dict[str, int] = {}
        self.sessions: list[FakeSession] = []

    def factory(self, config: WorkerConfig, events: asyncio.Queue) -> FakeSession:
        session = FakeSession(self, config, events)
        self.sessions.append(session)
        return session

    def latest(self, name: str) -> FakeSession:
        return [s for s in self.sessions if s.name == name][-1]


@pytest.fixture
def world():
    """alpha（search, fetch）と beta（search）のワーカー"""
    w = FakeWorld()
    w.tools["alpha"] = [
        make_tool("search", "Search documents", query="string"),
        make_tool("fetch", "Fetch a URL", url="string"),
    ]
    w.tools["beta"] = [make_tool("search", "Search issues", query="string")]
    return w


@pytest.fixture
def worker_configs():
    """テスト用のワーカー定義"""
    return [
        WorkerConfig(name="alpha", command="alpha-server"),
        WorkerConfig(name="beta", command="beta-server", args=["--verbose"]),
    ]


@pytest.fixture
def config_store(tmp_path, worker_configs):
    """ワーカー定義を保存済みの一時ストア"""
    store = ConfigStore(tmp_path / "gateway.config.json")
    store.save(GatewayConfig(services=worker_configs))
    return store


@pytest.fixture
def tools_changed():
    """on_tools_changed の呼び出し記録"""
    return []


@pytest_asyncio.fixture
async def supervisor(world, worker_configs, config_store, tools_changed):
    """FakeSession を使うSupervisor"""
    sup = WorkerSupervisor(
        worker_configs,
        ToolRegistry(),
        on_tools_changed=lambda: tools_changed.append(True),
        store=config_store,
        session_factory=world.factory,
    )
    yield sup
    await sup.shutdown()
