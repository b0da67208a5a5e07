"""環境変数ヘルパー

.env ファイルの読み込みと、ワーカーenvの ${VAR} 展開。
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(path: Path | None) -> bool:
    """.envファイルをプロセス環境に読み込む

    既に設定されている環境変数は上書きしない。

    Returns:
        読み込んだ場合True
    """
    if path is None or not path.is_file():
        return False
    load_dotenv(path, override=False)
    logger.info(f".envを読み込みました: {path}")
    return True


def expand_env(
    overlay: Mapping[str, str], environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """env上書きの値に含まれる ${VAR} / $VAR を展開

    未定義の変数はそのまま残す。
    """
    base = os.environ if environ is None else environ

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1) or match.group(2)
        return base.get(key, match.group(0))

    return {key: _VAR_PATTERN.sub(_replace, value) for key, value in overlay.items()}


def build_child_env(
    overlay: Mapping[str, str], environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """ワーカープロセスに渡す環境（現在の環境 + 展開済みの上書き）"""
    base = dict(os.environ if environ is None else environ)
    base.update(expand_env(overlay, base))
    return base
