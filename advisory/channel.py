"""AI 评论旁路通道。

评论请求提交到单个后台线程执行，结果按 signal id 存放；
tick 循环只提交、不等待，评论与下一次评估之间没有先后保证。
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Sequence

from advisory.client import Advisor
from shared.models.models import Candle, Signal
from shared.utils.logging import setup_logger


class AdvisoryChannel:
    def __init__(self, advisor: Advisor, max_annotations: int = 500):
        self.advisor = advisor
        self.max_annotations = int(max_annotations)
        self.logger = setup_logger("advisory")
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="advisory")
        self._lock = threading.Lock()
        self._annotations: dict[str, str] = {}

    def submit(self, signal: Signal, candles: Sequence[Candle]) -> Future:
        snapshot = list(candles[-5:])
        return self._executor.submit(self._annotate, signal, snapshot)

    def submit_task(self, fn: Callable[[], None]) -> Future:
        """在同一个后台线程上执行其它咨询类任务（如宏观校验）。"""
        return self._executor.submit(self._guarded, fn)

    def _guarded(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            self.logger.exception("Advisory task failed")

    def _annotate(self, signal: Signal, candles: list[Candle]) -> None:
        try:
            text = self.advisor.get_commentary(signal, candles)
        except Exception:
            self.logger.exception("Commentary failed for %s", signal.id)
            return
        with self._lock:
            self._annotations[signal.id] = text
            # dict 保持插入顺序，超限时丢最早的
            while len(self._annotations) > self.max_annotations:
                self._annotations.pop(next(iter(self._annotations)))
        self.logger.info("[%s] %s: %s", signal.symbol, signal.action.value, text)

    def annotation(self, signal_id: str) -> str | None:
        with self._lock:
            return self._annotations.get(signal_id)

    def annotations(self) -> dict[str, str]:
        with self._lock:
            return dict(self._annotations)

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
