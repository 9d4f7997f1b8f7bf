"""行情数据模块（market_data）。

该包聚合：
- 实时行情客户端（Yahoo REST / 本地假数据）
- 历史 K 线的 CSV 加载与保存
"""

from market_data.client import FakeMarketClient, MarketClient, YahooMarketClient, get_market_client
from market_data.loader import load_candles_from_csv, save_candles_to_csv

__all__ = [
    "MarketClient",
    "FakeMarketClient",
    "YahooMarketClient",
    "get_market_client",
    "load_candles_from_csv",
    "save_candles_to_csv",
]
