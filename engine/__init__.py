"""执行引擎层（engine）。

- `BacktestEngine` / `run_backtest`：历史 K 线逐根回测；
- `TradingEngine`：纸面实时循环；
- 两者共用 `signal_pipeline.process_symbol`，命令行入口由仓库根目录 `main.py` 统一承载。
"""
