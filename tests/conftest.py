import sys
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，测试内直接以顶层包名导入（algo/engine/broker/...）
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture
def sample_config_path() -> Path:
    """仓库自带的示例配置。"""
    return ROOT / "config" / "config.yml"
