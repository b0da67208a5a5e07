"""設定ストア

ワーカー定義ファイル（JSONまたはYAML）の読み書き。
キャッシュは持たず、毎回ファイルを読み直すため外部での編集も反映される。
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path

import portalocker
import yaml
from pydantic import ValidationError

from .config import GatewayConfig
from .errors import ConfigStoreError

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 10


class ConfigStore:
    """ワーカー定義ファイルのストア

    Attributes:
        path: 設定ファイルのパス（.json ならJSON、それ以外はYAMLで保存）
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def load(self) -> GatewayConfig:
        """設定ファイルを読み込む

        ファイルが存在しない場合は空の設定を返す。

        Raises:
            ConfigStoreError: 読み込み・検証に失敗した場合
        """
        if not self.path.exists():
            return GatewayConfig()

        try:
            with open(self.path, encoding="utf-8") as f:
                # JSONはYAMLのサブセットなので同じローダーで読める
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigStoreError(f"Failed to read config {self.path}: {e}") from e

        if not isinstance(raw, dict) or not isinstance(raw.get("services", []), list):
            raise ConfigStoreError(f"Invalid config {self.path}: 'services' array required")

        try:
            return GatewayConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigStoreError(f"Invalid config {self.path}: {e}") from e

    def save(self, config: GatewayConfig) -> None:
        """設定ファイルを書き込む

        Raises:
            ConfigStoreError: 書き込みに失敗した場合
        """
        data = config.to_store_dict()
        if self.path.suffix.lower() == ".json":
            text = json.dumps(data, ensure_ascii=False, indent=2) + "\n"
        else:
            text = yaml.safe_dump(data, allow_unicode=True, sort_keys=False)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            tmp_path.write_text(text, encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            raise ConfigStoreError(f"Failed to write config {self.path}: {e}") from e
        logger.debug(f"設定を保存: {self.path} ({len(config.services)}件)")

    def update(self, mutate: Callable[[GatewayConfig], GatewayConfig]) -> GatewayConfig:
        """ファイルロック下で 読み込み→変更→保存 を行う

        Args:
            mutate: 現在の設定を受け取り新しい設定を返す関数。
                GatewayError を送出すると保存せずに中断する

        Returns:
            保存した設定
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with portalocker.Lock(self.lock_path, mode="a", timeout=LOCK_TIMEOUT_SECONDS):
                updated = mutate(self.load())
                self.save(updated)
                return updated
        except portalocker.exceptions.LockException as e:
            raise ConfigStoreError(f"Config {self.path} is locked: {e}") from e
