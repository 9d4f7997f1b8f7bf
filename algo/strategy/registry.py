"""策略注册表：字符串 -> Strategy 实现。"""

from __future__ import annotations

from typing import Any

from algo.strategy.base import Strategy
from algo.strategy.evaluator import EvaluationConfig
from algo.strategy.metals_trend import MetalsTrendStrategy

_REGISTRY: dict[str, type[Strategy]] = {}


def register_strategy(name: str, cls: type[Strategy]) -> None:
    _REGISTRY[name] = cls


def get_strategy_cls(name: str) -> type[Strategy]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown strategy: {name}")
    return _REGISTRY[name]


def build_strategy(cfg: Any, *, equity: float | None = None) -> Strategy:
    """从 MainConfig 构建策略实例（按 `strategy.type` 查表）。"""
    cls = get_strategy_cls(str(cfg.strategy.type))
    return cls(EvaluationConfig.from_main(cfg, equity=equity))


register_strategy("metals_trend", MetalsTrendStrategy)
