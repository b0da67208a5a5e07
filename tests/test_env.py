"""環境変数ヘルパーのテスト"""

import os

from mcp_gateway.core.env import build_child_env, expand_env, load_env_file


class TestExpandEnv:
    """expand_env のテスト"""

    def test_expands_braced_and_bare_references(self):
        """${VAR} と $VAR を展開する"""
        environ = {"HOME": "/home/bee", "TOKEN": "secret"}

        result = expand_env(
            {"AUTH": "Bearer ${TOKEN}", "DATA": "$HOME/data", "PLAIN": "value"}, environ
        )

        assert result == {
            "AUTH": "Bearer secret",
            "DATA": "/home/bee/data",
            "PLAIN": "value",
        }

    def test_unknown_reference_kept(self):
        """未定義の変数はそのまま残す"""
        result = expand_env({"AUTH": "${MISSING}-$ALSO_MISSING"}, {})

        assert result == {"AUTH": "${MISSING}-$ALSO_MISSING"}


class TestBuildChildEnv:
    """build_child_env のテスト"""

    def test_overlay_on_ambient_environment(self):
        """現在の環境に上書き分を重ねる"""
        environ = {"PATH": "/usr/bin", "TOKEN": "secret", "MODE": "dev"}

        result = build_child_env({"MODE": "prod", "API_KEY": "${TOKEN}"}, environ)

        assert result == {
            "PATH": "/usr/bin",
            "TOKEN": "secret",
            "MODE": "prod",
            "API_KEY": "secret",
        }
        assert environ["MODE"] == "dev"

    def test_defaults_to_process_environment(self, monkeypatch):
        """環境を省略するとプロセスの環境を使う"""
        monkeypatch.setenv("GATEWAY_TEST_TOKEN", "from-process")

        result = build_child_env({"API_KEY": "${GATEWAY_TEST_TOKEN}"})

        assert result["API_KEY"] == "from-process"
        assert result["GATEWAY_TEST_TOKEN"] == "from-process"


class TestLoadEnvFile:
    """load_env_file のテスト"""

    def test_loads_without_overriding(self, tmp_path, monkeypatch):
        """既存の環境変数は上書きしない"""
        # Arrange
        env_file = tmp_path / ".env"
        env_file.write_text("GATEWAY_TEST_NEW=loaded\nGATEWAY_TEST_EXISTING=from-file\n")
        monkeypatch.setenv("GATEWAY_TEST_EXISTING", "original")
        monkeypatch.delenv("GATEWAY_TEST_NEW", raising=False)

        # Act
        loaded = load_env_file(env_file)

        # Assert
        assert loaded is True
        assert os.environ["GATEWAY_TEST_NEW"] == "loaded"
        assert os.environ["GATEWAY_TEST_EXISTING"] == "original"

    def test_missing_file(self, tmp_path):
        """ファイルが無ければ何もしない"""
        assert load_env_file(tmp_path / ".env") is False
        assert load_env_file(None) is False
