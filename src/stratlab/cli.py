"""
Command-line entry point for Strategy Lab.

Usage:
    stratlab generate --symbols BTCUSDT,ETHUSDT --intervals 1h,4h --top-n 5
    stratlab strategies list
    stratlab deploy strat_1a2b3c4d strat_5e6f7a8b --capital 10000
    stratlab sessions list
    stratlab reset
    stratlab risk --range-days 7 --interval 15m
    stratlab run
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, List, Optional

from . import __version__
from .config.config_manager import ConfigManager, ExecutionMode, LogLevel
from .exceptions import StratLabError
from .service import TradingService
from .utils.logger import setup_logging, shutdown_logging

logger = logging.getLogger(__name__)


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='stratlab',
        description='Strategy optimizer and paper-trading engine',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='Path to a YAML/JSON configuration file'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=[level.value for level in LogLevel],
        default=None,
        help='Logging level (overrides config)'
    )
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')

    commands = parser.add_subparsers(dest='command', required=True)

    generate = commands.add_parser('generate', help='Search and store strategies')
    generate.add_argument('--symbols', required=True, help='Comma-separated symbols')
    generate.add_argument('--intervals', required=True, help='Comma-separated intervals')
    generate.add_argument('--top-n', type=int, default=None)
    generate.add_argument('--limit', type=int, default=None, help='Candles per symbol/interval')
    generate.add_argument('--iterations', type=int, default=None, help='Parameter sets per strategy type')
    generate.add_argument('--types', default=None, help='Comma-separated strategy types')
    generate.add_argument('--seed', type=int, default=None)

    strategies = commands.add_parser('strategies', help='List or delete strategies')
    strategies_cmd = strategies.add_subparsers(dest='action', required=True)
    strategies_list = strategies_cmd.add_parser('list')
    strategies_list.add_argument('--symbol', default=None)
    strategies_list.add_argument('--interval', default=None)
    strategies_delete = strategies_cmd.add_parser('delete')
    strategies_delete.add_argument('strategy_id', nargs='?')
    strategies_delete.add_argument('--all', action='store_true', help='Delete every strategy')

    deploy = commands.add_parser('deploy', help='Start paper-trading sessions')
    deploy.add_argument('strategy_ids', nargs='+')
    deploy.add_argument('--capital', type=float, default=None, help='Session capital, or the pool for several')
    deploy.add_argument('--mode', choices=[m.value for m in ExecutionMode], default=None)

    sessions = commands.add_parser('sessions', help='Inspect or stop sessions')
    sessions_cmd = sessions.add_subparsers(dest='action', required=True)
    sessions_list = sessions_cmd.add_parser('list')
    sessions_list.add_argument('--status', choices=['active', 'stopped'], default=None)
    sessions_stop = sessions_cmd.add_parser('stop')
    sessions_stop.add_argument('session_id')
    sessions_trades = sessions_cmd.add_parser('trades')
    sessions_trades.add_argument('session_id')
    sessions_trades.add_argument('--limit', type=int, default=None)
    sessions_equity = sessions_cmd.add_parser('equity')
    sessions_equity.add_argument('session_id')

    commands.add_parser('reset', help='Stop every active session')

    risk = commands.add_parser('risk', help='Portfolio risk report')
    risk.add_argument('--range-days', type=int, default=None)
    risk.add_argument('--interval', choices=['3m', '15m', '1h', '1d'], default=None)
    risk.add_argument('--confidence', type=float, default=None)

    commands.add_parser('run', help='Run live paper trading for active sessions')

    return parser.parse_args(argv)


async def _run_live(service: TradingService) -> int:
    """Run the live engine until SIGINT/SIGTERM."""
    task = asyncio.create_task(service.run_live())
    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, task.cancel)
    except NotImplementedError:
        logger.warning("Signal handlers not supported on this platform")

    try:
        await task
    except asyncio.CancelledError:
        logger.info("Shutdown signal received")
    return 0


async def run_command(args: argparse.Namespace, service: TradingService) -> int:
    if args.command == 'generate':
        result = await service.generate(
            _split(args.symbols),
            _split(args.intervals),
            top_n=args.top_n,
            limit=args.limit,
            iterations=args.iterations,
            types=_split(args.types) or None,
            seed=args.seed,
        )
        _print(result.to_dict())
        return 0

    if args.command == 'strategies':
        if args.action == 'list':
            strategies = await service.list_strategies(args.symbol, args.interval)
            _print([
                {
                    'strategy_id': s.strategy_id,
                    'name': s.name,
                    'kelly_fraction': s.kelly_fraction,
                    **s.performance_metrics.to_dict(),
                }
                for s in strategies
            ])
        elif args.all:
            _print({'deleted': await service.delete_all_strategies()})
        elif args.strategy_id:
            _print({'sessions_stopped': await service.delete_strategy(args.strategy_id)})
        else:
            logger.error("Give a strategy id or --all")
            return 2
        return 0

    if args.command == 'deploy':
        if len(args.strategy_ids) == 1:
            record = await service.start_session(args.strategy_ids[0], args.capital, args.mode)
            _print(record.to_dict())
            return 0
        capital = args.capital or service.config.paper_trading.default_capital
        result = await service.start_bulk(args.strategy_ids, capital, args.mode)
        _print(result.to_dict())
        return 1 if result.has_failures else 0

    if args.command == 'sessions':
        if args.action == 'list':
            _print([s.to_dict() for s in await service.list_sessions(args.status)])
        elif args.action == 'stop':
            _print((await service.stop_session(args.session_id)).to_dict())
        elif args.action == 'trades':
            _print([t.to_dict() for t in await service.get_trades(args.session_id, args.limit)])
        elif args.action == 'equity':
            _print([s.to_dict() for s in await service.get_equity_curve(args.session_id)])
        return 0

    if args.command == 'reset':
        _print({'stopped': await service.reset_sessions()})
        return 0

    if args.command == 'risk':
        report = await service.get_risk_report(args.range_days, args.interval, args.confidence)
        _print(report.to_dict())
        return 0

    if args.command == 'run':
        return await _run_live(service)

    return 2


async def main_async(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)

    manager = ConfigManager()
    try:
        config = manager.load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    if args.log_level:
        config.logging.level = LogLevel(args.log_level)
    setup_logging(config.logging)

    try:
        async with TradingService(config) as service:
            return await run_command(args, service)
    except StratLabError as e:
        logger.error(str(e))
        return 1
    finally:
        shutdown_logging()


def main() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main_async()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == '__main__':
    main()
