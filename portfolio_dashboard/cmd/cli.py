import argparse
import json
import sys
from dataclasses import asdict
from portfolio_dashboard.config.settings import settings
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.container import build_aggregator
from portfolio_dashboard.core.exceptions import ConfigurationError

def run_server():
    """HTTP 服務 + 背景排程 (用於 Docker)"""
    import uvicorn
    from portfolio_dashboard.api.app import create_app

    app = create_app(build_aggregator())
    logger.info(f"Starting dashboard API on {settings.API_HOST}:{settings.API_PORT}")
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)

def main():
    parser = argparse.ArgumentParser(description="Portfolio Dashboard CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Command: snapshot (印出一次快照)
    subparsers.add_parser("snapshot", help="Build and print a single portfolio snapshot")

    # Command: record (手動記錄一次餘額)
    subparsers.add_parser("record", help="Record the current total balance to history")

    # Command: compact (手動清理歷史)
    subparsers.add_parser("compact", help="Drop balance history older than the retention window")

    # Command: history (印出每小時資產曲線)
    subparsers.add_parser("history", help="Print the hourly balance history for the last 24h")

    # Command: serve (持續跑)
    subparsers.add_parser("serve", help="Run the HTTP API with the background scheduler")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        aggregator = build_aggregator() if args.command != "serve" else None
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.command == "snapshot":
        snapshot = aggregator.build_snapshot()
        print(json.dumps(snapshot, indent=2, ensure_ascii=False))
        if "error" in snapshot:
            sys.exit(1)

    elif args.command == "record":
        aggregator.record_hourly_snapshot()

    elif args.command == "compact":
        aggregator.compact_history()

    elif args.command == "history":
        points = aggregator.hourly_balance_history()
        print(json.dumps([asdict(p) for p in points], indent=2))

    elif args.command == "serve":
        try:
            run_server()
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(1)

if __name__ == "__main__":
    main()
