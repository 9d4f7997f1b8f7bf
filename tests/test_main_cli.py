from __future__ import annotations

from types import SimpleNamespace

import pytest

import main as app_main


class _FakeEngine:
    instances: list["_FakeEngine"] = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        type(self).instances.append(self)

    def run(self):
        return SimpleNamespace(summary={"engine": type(self).__name__, **self.kwargs})


class _FakeTrading(_FakeEngine):
    instances = []


class _FakeBacktest(_FakeEngine):
    instances = []


@pytest.fixture(autouse=True)
def _patch_engines(monkeypatch):
    _FakeTrading.instances.clear()
    _FakeBacktest.instances.clear()
    monkeypatch.setattr(app_main, "TradingEngine", _FakeTrading)
    monkeypatch.setattr(app_main, "BacktestEngine", _FakeBacktest)


def test_default_task_is_runner():
    args = app_main.parse_args([])
    assert args.task == "runner"
    assert args.config == "config/config.yml"
    assert args.max_ticks is None


def test_config_accepted_before_and_after_subcommand():
    assert app_main.parse_args(["--config", "a.yml", "backtest"]).config == "a.yml"
    assert app_main.parse_args(["backtest", "--config", "b.yml"]).config == "b.yml"


def test_runner_dispatch():
    summary = app_main.main(["runner", "--max-ticks", "2", "--config", "c.yml"])
    assert summary["engine"] == "_FakeTrading"
    assert _FakeTrading.instances[0].kwargs == {"cfg_path": "c.yml", "max_ticks": 2}
    assert _FakeBacktest.instances == []


def test_backtest_dispatch():
    summary = app_main.main(
        ["backtest", "--symbol", "SLV", "--data", "slv.csv", "--output-dir", "out"]
    )
    assert summary["engine"] == "_FakeBacktest"
    assert _FakeBacktest.instances[0].kwargs == {
        "cfg_path": "config/config.yml",
        "symbol": "SLV",
        "data_path": "slv.csv",
        "artifacts_dir": "out",
    }


def test_test_task_skips_live_by_default(monkeypatch):
    seen = {}
    monkeypatch.setattr(pytest, "main", lambda argv: seen.setdefault("argv", argv) and 0)
    app_main.main(["test"])
    assert seen["argv"] == ["-q", "-m", "not live"]

    seen.clear()
    app_main.main(["test", "--include-live"])
    assert seen["argv"] == ["-q"]


def test_unknown_subcommand_exits():
    with pytest.raises(SystemExit):
        app_main.parse_args(["optimize"])
