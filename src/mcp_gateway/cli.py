"""MCP Gateway CLI

コマンドラインインターフェース。
"""

import argparse
import asyncio
import logging
import sys

from .core import (
    ConfigStore,
    ConfigStoreError,
    DuplicateWorkerError,
    GatewayConfig,
    GatewaySettings,
    UnknownWorkerError,
    WorkerConfig,
    get_settings,
    reload_settings,
)

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None):
    """メインエントリーポイント"""
    parser = argparse.ArgumentParser(
        description="MCP Gateway - 複数のMCPサーバーを1つのstdio接続に束ねる",
        prog="mcp-gateway",
    )
    parser.add_argument("--config", help="ワーカー定義ファイルのパス（既定: gateway.config.json）")

    subparsers = parser.add_subparsers(dest="command", help="利用可能なコマンド")

    # serve コマンド
    subparsers.add_parser("serve", help="Gatewayをstdioで起動")

    # services コマンド
    subparsers.add_parser("services", help="登録済みワーカーを表示")

    # add コマンド
    add_parser = subparsers.add_parser("add", help="ワーカー定義を追加")
    add_parser.add_argument("name", help="ワーカー名（'_' は使用不可）")
    add_parser.add_argument("server_command", metavar="COMMAND", help="起動コマンド")
    add_parser.add_argument(
        "server_args", metavar="ARGS", nargs=argparse.REMAINDER, help="コマンド引数"
    )
    add_parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="環境変数（複数指定可、${VAR} は起動時に展開）",
    )
    add_parser.add_argument("--timeout", type=int, help="接続タイムアウト（ミリ秒）")
    add_parser.add_argument(
        "--auto-activate", action="store_true", help="Gateway起動時に自動で起動する"
    )

    # remove コマンド
    remove_parser = subparsers.add_parser("remove", help="ワーカー定義を削除")
    remove_parser.add_argument("name", help="ワーカー名")

    args = parser.parse_args(argv)

    settings = reload_settings(config_path=args.config) if args.config else get_settings()
    configure_logging(settings)

    if args.command == "serve":
        run_serve(settings)
    elif args.command == "services":
        run_services(settings)
    elif args.command == "add":
        run_add(settings, args)
    elif args.command == "remove":
        run_remove(settings, args)
    else:
        parser.print_help()
        sys.exit(1)


def configure_logging(settings: GatewaySettings) -> None:
    """ルートロガーを設定（stdoutはプロトコル用のためstderrへ出力）"""
    logging.basicConfig(
        stream=sys.stderr,
        level=settings.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(store: ConfigStore) -> GatewayConfig:
    try:
        return store.load()
    except ConfigStoreError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


def run_serve(settings: GatewaySettings):
    """Gatewayを起動"""
    from .core.env import load_env_file
    from .gateway.server import GatewayMCPServer

    load_env_file(settings.get_env_file_path())

    store = ConfigStore(settings.get_config_path())
    config = _load_config(store)
    logger.info(f"{len(config.services)}件のワーカー定義を読み込みました: {store.path}")

    server = GatewayMCPServer(config.services, store=store, settings=settings)
    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        pass


def run_services(settings: GatewaySettings):
    """登録済みワーカーを表示"""
    store = ConfigStore(settings.get_config_path())
    config = _load_config(store)

    if not config.services:
        print("No services configured")
        return

    for service in config.services:
        command_line = " ".join([service.command, *service.args])
        auto = " (auto)" if service.auto_activate else ""
        print(f"{service.name}: {command_line}{auto}")


def run_add(settings: GatewaySettings, args):
    """ワーカー定義を追加"""
    env: dict[str, str] = {}
    for item in args.env:
        key, sep, value = item.partition("=")
        if not sep or not key:
            print(f"Error: --env must be KEY=VALUE: {item}", file=sys.stderr)
            sys.exit(1)
        env[key] = value

    fields = {
        "name": args.name,
        "command": args.server_command,
        "args": list(args.server_args),
        "env": env,
        "auto_activate": args.auto_activate,
    }
    if args.timeout is not None:
        fields["timeout"] = args.timeout
    try:
        worker = WorkerConfig(**fields)
    except ValueError as e:
        print(f"Error: Invalid service definition for {args.name}: {e}", file=sys.stderr)
        sys.exit(1)

    def _append(current: GatewayConfig) -> GatewayConfig:
        if current.get(worker.name) is not None:
            raise DuplicateWorkerError(worker.name)
        return current.with_service(worker)

    store = ConfigStore(settings.get_config_path())
    try:
        store.update(_append)
    except (ConfigStoreError, DuplicateWorkerError) as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ {worker.name} added ({' '.join([worker.command, *worker.args])})")


def run_remove(settings: GatewaySettings, args):
    """ワーカー定義を削除"""

    def _drop(current: GatewayConfig) -> GatewayConfig:
        if current.get(args.name) is None:
            raise UnknownWorkerError(args.name)
        return current.without_service(args.name)

    store = ConfigStore(settings.get_config_path())
    try:
        store.update(_drop)
    except (ConfigStoreError, UnknownWorkerError) as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ {args.name} removed")


if __name__ == "__main__":
    main()
