"""設定管理モジュールのテスト"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from mcp_gateway.core.config import (
    GatewayConfig,
    GatewaySettings,
    WorkerConfig,
    get_settings,
    reload_settings,
)


class TestWorkerConfig:
    """WorkerConfigのテスト"""

    def test_defaults(self):
        """デフォルト値が設定される"""
        # Arrange & Act
        config = WorkerConfig(name="alpha", command="npx")

        # Assert
        assert config.args == []
        assert config.env == {}
        assert config.auto_activate is False
        assert config.timeout == 30000
        assert config.timeout_seconds == 30.0

    def test_camel_case_alias(self):
        """設定ファイルの autoActivate を読み込める"""
        config = WorkerConfig.model_validate(
            {"name": "alpha", "command": "npx", "autoActivate": True, "timeout": 5000}
        )

        assert config.auto_activate is True
        assert config.timeout_seconds == 5.0

    def test_store_dict_uses_alias(self):
        """保存時は autoActivate で書き出す"""
        config = WorkerConfig(name="alpha", command="npx", auto_activate=True)

        data = config.to_store_dict()

        assert data["autoActivate"] is True
        assert "auto_activate" not in data

    def test_store_dict_keeps_unknown_keys_and_omits_unset_defaults(self):
        """未知のキーは残し、書かれていない既定値は書き出さない"""
        config = WorkerConfig.model_validate(
            {"name": "alpha", "command": "npx", "description": "mine"}
        )

        assert config.to_store_dict() == {
            "name": "alpha",
            "command": "npx",
            "description": "mine",
        }

    @pytest.mark.parametrize("name", ["my_server", "_", "alpha_"])
    def test_rejects_separator_in_name(self, name):
        """名前空間の区切り文字を含む名前は不可"""
        with pytest.raises(ValidationError, match="must not contain"):
            WorkerConfig(name=name, command="npx")

    def test_rejects_empty_name_and_command(self):
        """空の名前・コマンドは不可"""
        with pytest.raises(ValidationError):
            WorkerConfig(name="", command="npx")
        with pytest.raises(ValidationError):
            WorkerConfig(name="alpha", command="")

    def test_rejects_non_positive_timeout(self):
        """タイムアウトは正の値"""
        with pytest.raises(ValidationError):
            WorkerConfig(name="alpha", command="npx", timeout=0)

    def test_is_frozen(self):
        """読み込み後は変更できない"""
        config = WorkerConfig(name="alpha", command="npx")

        with pytest.raises(ValidationError):
            config.command = "uvx"


class TestGatewayConfig:
    """GatewayConfigのテスト"""

    def test_rejects_duplicate_names(self):
        """同名のワーカーは定義できない"""
        with pytest.raises(ValidationError, match="duplicate service name: alpha"):
            GatewayConfig(
                services=[
                    WorkerConfig(name="alpha", command="a"),
                    WorkerConfig(name="alpha", command="b"),
                ]
            )

    def test_lookup(self):
        """名前で定義を引ける"""
        config = GatewayConfig(
            services=[
                WorkerConfig(name="alpha", command="a"),
                WorkerConfig(name="beta", command="b"),
            ]
        )

        assert config.names() == ["alpha", "beta"]
        assert config.get("beta").command == "b"
        assert config.get("ghost") is None


class TestGatewaySettings:
    """GatewaySettingsのテスト"""

    def test_default_values(self):
        """デフォルト値が正しく設定される"""
        # Arrange & Act
        settings = GatewaySettings()

        # Assert
        assert settings.config_path == "gateway.config.json"
        assert settings.env_file == ".env"
        assert settings.server.name == "gateway"
        assert settings.logging.level == "INFO"
        assert settings.session.disconnect_timeout_seconds == 5.0

    def test_env_override(self, monkeypatch):
        """環境変数で上書きできる"""
        # Arrange
        monkeypatch.setenv("MCP_GATEWAY_CONFIG_PATH", "/etc/gateway/services.yaml")
        monkeypatch.setenv("MCP_GATEWAY_LOGGING__LEVEL", "DEBUG")
        monkeypatch.setenv("MCP_GATEWAY_SESSION__DISCONNECT_TIMEOUT_SECONDS", "1.5")

        # Act
        settings = GatewaySettings()

        # Assert
        assert settings.config_path == "/etc/gateway/services.yaml"
        assert settings.logging.level == "DEBUG"
        assert settings.session.disconnect_timeout_seconds == 1.5

    def test_relative_config_path_resolved_from_cwd(self, tmp_path, monkeypatch):
        """相対パスはカレントディレクトリ基準"""
        monkeypatch.chdir(tmp_path)
        settings = GatewaySettings(config_path="conf/gateway.config.json")

        assert settings.get_config_path() == (tmp_path / "conf" / "gateway.config.json").resolve()

    def test_env_file_relative_to_config(self, tmp_path):
        """.envは設定ファイルと同じディレクトリから探す"""
        settings = GatewaySettings(config_path=str(tmp_path / "gateway.config.json"))

        assert settings.get_env_file_path() == (tmp_path / ".env").resolve()

    def test_env_file_disabled(self):
        """env_fileを空にすると.envを読まない"""
        settings = GatewaySettings(env_file="")

        assert settings.get_env_file_path() is None


class TestSettingsSingleton:
    """get_settings / reload_settings のテスト"""

    def test_get_settings_is_cached(self):
        """同じインスタンスを返す"""
        reload_settings()

        assert get_settings() is get_settings()

    def test_reload_settings_applies_overrides(self):
        """reload_settingsで作り直す"""
        before = get_settings()

        after = reload_settings(config_path="other.json")

        assert after is not before
        assert get_settings().config_path == "other.json"
        assert Path(get_settings().get_config_path()).name == "other.json"
        reload_settings()
