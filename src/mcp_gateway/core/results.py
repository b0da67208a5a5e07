"""ツール結果ヘルパー

全ての操作はテキストブロックのリストとエラーフラグからなる
CallToolResult を返す。
"""

from __future__ import annotations

from mcp.types import CallToolResult, TextContent


def text_result(text: str, *, is_error: bool = False) -> CallToolResult:
    """テキスト1ブロックの結果を作成"""
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


def error_result(text: str) -> CallToolResult:
    """エラーフラグ付きの結果を作成"""
    return text_result(text, is_error=True)


def result_text(result: CallToolResult) -> str:
    """結果中のテキストブロックを改行で連結"""
    return "\n".join(block.text for block in result.content if isinstance(block, TextContent))
