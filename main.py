"""metalsbot 统一命令行入口。

通过子命令驱动不同任务：

- `runner`：纸面实时主循环（每个 tick 评估整个 watchlist）。
- `backtest`：单个品种的历史回测，并导出 trades/equity 产物。
- `test`：运行 pytest（默认跳过 live）。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any

from engine.backtest_engine import BacktestEngine
from engine.trading_engine import TradingEngine


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (runner/backtest/test)
    """
    config: str
    task: str
    max_ticks: int | None = None  # 仅用于 debug，限制运行多少个 tick 就停止
    symbol: str | None = None
    data: str | None = None
    output_dir: str | None = None
    include_live_tests: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="metalsbot", description="贵金属 ETF 信号机器人")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `python main.py --config ... backtest`（全局）与 `python main.py backtest --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_runner = sub.add_parser("runner", help="纸面实时主循环")
    _add_config_arg(p_runner, default=argparse.SUPPRESS)
    p_runner.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="跑多少个 tick 后退出（用于演示/测试）",
    )

    p_backtest = sub.add_parser("backtest", help="单品种回测")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)
    p_backtest.add_argument("--symbol", type=str, default=None, help="回测品种（默认 backtest.symbol）")
    p_backtest.add_argument("--data", type=str, default=None, help="历史 K 线 CSV（默认 backtest.data_path）")
    p_backtest.add_argument("--output-dir", type=str, default=None, help="产物目录（默认 backtest.artifacts_dir）")

    p_test = sub.add_parser("test", help="运行 pytest（默认跳过 live）")
    _add_config_arg(p_test, default=argparse.SUPPRESS)
    p_test.add_argument(
        "--include-live",
        action="store_true",
        help="包含 @pytest.mark.live 测试（可能联网）",
    )

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    task = ns.task or "runner"
    config = getattr(ns, "config", "config/config.yml")
    return CliArgs(
        config=str(config),
        task=task,
        max_ticks=getattr(ns, "max_ticks", None),
        symbol=getattr(ns, "symbol", None),
        data=getattr(ns, "data", None),
        output_dir=getattr(ns, "output_dir", None),
        include_live_tests=bool(getattr(ns, "include_live", False)),
    )


def main(argv: list[str] | None = None) -> Any:
    """程序主入口。

    Returns
    -------
    Any
        对应子命令的返回结果（runner/backtest 为 summary dict，test 为 pytest 退出码）。
    """
    args = parse_args(argv)

    if args.task == "runner":
        return TradingEngine(cfg_path=args.config, max_ticks=args.max_ticks).run().summary

    if args.task == "backtest":
        engine = BacktestEngine(
            cfg_path=args.config,
            symbol=args.symbol,
            data_path=args.data,
            artifacts_dir=args.output_dir,
        )
        return engine.run().summary

    if args.task == "test":
        import pytest

        pytest_args = ["-q"]
        if not args.include_live_tests:
            pytest_args += ["-m", "not live"]
        return pytest.main(pytest_args)

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
