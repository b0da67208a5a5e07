"""Gateway 設定管理モジュール

Pydantic / Pydantic Settings を使用した型安全な設定管理。

- WorkerConfig / GatewayConfig: ワーカー定義ファイル（gateway.config.json）のスキーマ
- GatewaySettings: 環境変数（MCP_GATEWAY_*）から読み込むプロセス設定
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# 名前空間の区切り文字（ワーカー名には使用不可）
NAMESPACE_SEPARATOR = "_"

DEFAULT_CONNECT_TIMEOUT_MS = 30000


class WorkerConfig(BaseModel):
    """ワーカー定義

    ワーカープロセスの起動方法と接続設定。読み込み後は不変で、
    変更はadd/removeによる再作成でのみ行う。
    """

    # 未知のキー（description 等）は保存時に書き戻すため保持する
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    name: str = Field(min_length=1, description="ワーカー名（一意）")
    command: str = Field(min_length=1, description="起動コマンド")
    args: list[str] = Field(default_factory=list, description="コマンド引数")
    env: dict[str, str] = Field(
        default_factory=dict, description="環境変数の上書き（${VAR}で既存の環境変数を参照可能）"
    )
    auto_activate: bool = Field(
        default=False, alias="autoActivate", description="起動時に自動でactivateするか"
    )
    timeout: int = Field(
        default=DEFAULT_CONNECT_TIMEOUT_MS, gt=0, description="接続タイムアウト（ミリ秒）"
    )

    @field_validator("name")
    @classmethod
    def _reject_reserved_separator(cls, value: str) -> str:
        if NAMESPACE_SEPARATOR in value:
            raise ValueError(
                f"service name must not contain '{NAMESPACE_SEPARATOR}': {value!r}"
            )
        return value

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000

    def to_store_dict(self) -> dict:
        """設定ファイル保存用の辞書に変換

        ファイルに書かれていなかった既定値は書き出さない。
        """
        data = self.model_dump(by_alias=True, exclude_unset=True)
        data.update(self.model_extra or {})
        return data


class GatewayConfig(BaseModel):
    """ワーカー定義ファイル全体"""

    model_config = ConfigDict(extra="allow")

    services: list[WorkerConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _reject_duplicate_names(self) -> GatewayConfig:
        seen: set[str] = set()
        for service in self.services:
            if service.name in seen:
                raise ValueError(f"duplicate service name: {service.name}")
            seen.add(service.name)
        return self

    def names(self) -> list[str]:
        return [s.name for s in self.services]

    def get(self, name: str) -> WorkerConfig | None:
        return next((s for s in self.services if s.name == name), None)

    def with_service(self, service: WorkerConfig) -> GatewayConfig:
        """ワーカー定義を末尾に追加した設定（未知のキーは維持）"""
        return self.model_copy(update={"services": [*self.services, service]})

    def without_service(self, name: str) -> GatewayConfig:
        """ワーカー定義を削除した設定（未知のキーは維持）"""
        return self.model_copy(
            update={"services": [s for s in self.services if s.name != name]}
        )

    def to_store_dict(self) -> dict:
        data = dict(self.model_extra or {})
        data["services"] = [s.to_store_dict() for s in self.services]
        return data


class ServerConfig(BaseModel):
    """MCPサーバー設定"""

    name: str = Field(default="gateway")
    version: str = Field(default="0.1.0")


class LoggingConfig(BaseModel):
    """ロギング設定"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


class SessionConfig(BaseModel):
    """ワーカーセッション設定"""

    disconnect_timeout_seconds: float = Field(
        default=5.0, gt=0, description="切断時にプロセス終了を待つ秒数"
    )


class GatewaySettings(BaseSettings):
    """Gateway全体設定

    設定の優先順位:
    1. 環境変数（MCP_GATEWAY_ 接頭辞、ネストは __ 区切り）
    2. デフォルト値
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_GATEWAY_",
        env_nested_delimiter="__",
    )

    config_path: str = Field(default="gateway.config.json", description="ワーカー定義ファイル")
    env_file: str | None = Field(
        default=".env", description="起動時に読み込む.envファイル（設定ファイルからの相対パス）"
    )
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    def get_config_path(self) -> Path:
        """ワーカー定義ファイルを絶対パスで取得"""
        path = Path(self.config_path).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        return path.resolve()

    def get_env_file_path(self) -> Path | None:
        """.envファイルを絶対パスで取得（無効化されている場合はNone）"""
        if not self.env_file:
            return None
        path = Path(self.env_file).expanduser()
        if not path.is_absolute():
            path = self.get_config_path().parent / path
        return path.resolve()


# グローバル設定インスタンス（遅延初期化）
_settings: GatewaySettings | None = None


def get_settings() -> GatewaySettings:
    """設定シングルトンを取得"""
    global _settings
    if _settings is None:
        _settings = GatewaySettings()
    return _settings


def reload_settings(**overrides) -> GatewaySettings:
    """設定を再読み込み"""
    global _settings
    _settings = GatewaySettings(**overrides)
    return _settings
