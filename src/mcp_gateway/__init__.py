"""MCP Gateway

複数のMCPサーバー（ワーカー）を子プロセスとして管理し、
1つのstdio接続に束ねて公開するゲートウェイ。
"""

__version__ = "0.1.0"
