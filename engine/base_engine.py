"""执行引擎基类。

回测引擎与纸面实时引擎共用同一个出口：`run() -> EngineResult`，
summary 为可直接打印/序列化的 dict，artifacts 记录导出的产物位置。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    @abstractmethod
    def run(self) -> EngineResult:
        raise NotImplementedError
