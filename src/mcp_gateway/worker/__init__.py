"""Worker モジュール

ワーカープロセスのセッションと、そのライフサイクルを管理するSupervisor。
"""

from .session import SessionClosed, WorkerSession
from .supervisor import WorkerSupervisor, format_tool_signature

__all__ = [
    "SessionClosed",
    "WorkerSession",
    "WorkerSupervisor",
    "format_tool_signature",
]
