"""AI 评论 / 宏观校验客户端。

输出仅供参考：核心决策从不等待、也不依赖这里的结果
（除非显式开启 `risk.macro_gate`，此时宏观 `is_safe=False` 会阻止新开仓）。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

import requests

from shared.models.models import Candle, MacroCheck, MacroSource, Signal
from shared.utils.logging import setup_logger

OFFLINE_COMMENTARY = "AI analysis offline (key configuration pending)."
EMPTY_COMMENTARY = "Scanning completed. No anomalous conditions found."
FAILED_COMMENTARY = "Thesis generation paused (rate limit)."
MAX_SOURCES = 3


class Advisor(ABC):
    @abstractmethod
    def get_commentary(self, signal: Signal, candles: Sequence[Candle]) -> str:
        ...

    @abstractmethod
    def validate_macro_thesis(self, symbols: Sequence[str]) -> MacroCheck:
        ...


class NullAdvisor(Advisor):
    """未配置 key 时使用：固定文案，宏观校验永远放行。"""

    def get_commentary(self, signal: Signal, candles: Sequence[Candle]) -> str:
        return OFFLINE_COMMENTARY

    def validate_macro_thesis(self, symbols: Sequence[str]) -> MacroCheck:
        return MacroCheck(is_safe=True, reason="Bypassed (API key pending)")


def commentary_prompt(signal: Signal, candles: Sequence[Candle]) -> str:
    last5 = " | ".join(f"O: {c.open:.2f}, C: {c.close:.2f}" for c in candles[-5:])
    return (
        "Context: 15m Metals Strategy.\n"
        f"Signal: {signal.symbol} {signal.action.value} at {signal.price:.2f}.\n"
        f"Stats: Confidence {signal.confidence_adj}%, Indicators: {', '.join(signal.reason_codes)}.\n"
        f"Data: {last5}.\n"
        "Synthesize a professional thesis for this setup (20 words max)."
    )


def macro_prompt(symbols: Sequence[str]) -> str:
    return (
        "Analyze current financial news and geopolitical events impacting the Metals Sector "
        f"and ETFs: {', '.join(symbols)}.\n"
        "Check for:\n"
        "1. Unexpected central bank rate decisions.\n"
        "2. Geopolitical escalations affecting supply chains.\n"
        "3. Major mining production halts or labor strikes.\n"
        'If any significant bearish catalyst would invalidate a LONG position in the next 24 hours, '
        'start your response with "RISK:". Otherwise, respond with "SAFE".'
    )


def extract_text(payload: dict[str, Any]) -> str:
    """拼接 generateContent 响应第一个候选的所有文本片段。"""
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0].get("content") or {}).get("parts")) or []
    return "".join(str(p.get("text") or "") for p in parts).strip()


def extract_sources(payload: dict[str, Any], limit: int = MAX_SOURCES) -> tuple[MacroSource, ...]:
    candidates = payload.get("candidates") or []
    if not candidates:
        return ()
    chunks = (candidates[0].get("groundingMetadata") or {}).get("groundingChunks") or []
    sources = [
        MacroSource(title=str(c["web"].get("title") or "Sector Report"), uri=str(c["web"].get("uri") or ""))
        for c in chunks
        if c.get("web")
    ]
    return tuple(sources[:limit])


def parse_macro_response(payload: dict[str, Any]) -> MacroCheck:
    """回复中出现 `RISK:` 视为不安全；去掉标记后的文本作为原因。"""
    text = extract_text(payload) or "SAFE"
    is_safe = "RISK:" not in text.upper()
    reason = text.replace("SAFE", "").replace("RISK:", "").strip() or "Market conditions stable."
    return MacroCheck(is_safe=is_safe, reason=reason, sources=extract_sources(payload))


class GeminiAdvisor(Advisor):
    """Gemini `generateContent` REST 客户端。"""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        commentary_model: str = "gemini-2.5-flash",
        macro_model: str = "gemini-2.5-pro",
        timeout: float = 20.0,
        session: requests.Session | None = None,
        logger=None,
    ):
        if not api_key:
            raise ValueError("GeminiAdvisor requires api_key")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.commentary_model = commentary_model
        self.macro_model = macro_model
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or setup_logger("advisory")

    def _generate(self, model: str, prompt: str, *, grounded: bool = False) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if grounded:
            body["tools"] = [{"google_search": {}}]
        resp = self.session.post(
            f"{self.base_url}/models/{model}:generateContent",
            params={"key": self.api_key},
            json=body,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def get_commentary(self, signal: Signal, candles: Sequence[Candle]) -> str:
        try:
            payload = self._generate(self.commentary_model, commentary_prompt(signal, candles))
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("Commentary request failed for %s: %s", signal.symbol, exc)
            return FAILED_COMMENTARY
        return extract_text(payload) or EMPTY_COMMENTARY

    def validate_macro_thesis(self, symbols: Sequence[str]) -> MacroCheck:
        try:
            payload = self._generate(self.macro_model, macro_prompt(symbols), grounded=True)
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("Macro check failed: %s", exc)
            return MacroCheck(is_safe=True, reason="News telemetry interrupted. Proceed with technical caution.")
        return parse_macro_response(payload)


def build_advisor(advisory_cfg) -> Advisor:
    if advisory_cfg.provider == "gemini" and advisory_cfg.api_key:
        return GeminiAdvisor(
            api_key=advisory_cfg.api_key,
            base_url=advisory_cfg.base_url,
            commentary_model=advisory_cfg.commentary_model,
            macro_model=advisory_cfg.macro_model,
            timeout=advisory_cfg.timeout_secs,
        )
    return NullAdvisor()
