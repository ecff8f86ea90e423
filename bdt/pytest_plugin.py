"""
pytest プラグイン — E2E テスト向けフィクスチャ

pytest11 エントリポイントとして登録され、bdt をインストールした環境の
E2E テストに以下のフィクスチャを提供する。

  - bdt_config: 設定（--bdt-config で設定ファイルを指定）
  - metrics_collector: テストごとに新しい MetricsCollector
  - element_detector: metrics_collector に記録する ElementDetector
  - performance_monitor: metrics_collector に記録する PerformanceMonitor
  - credentials: TEST_USERNAME / TEST_PASSWORD の認証情報

テスト終了後、各テストのメトリクスをセッション単位で集計し、
ターミナルサマリーに出力する（ワーカープロセスごとの集計）。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from .config import BdtConfig, ConfigError, Credentials, load_config
from .core.detector import ElementDetector
from .core.metrics import MetricsCollector, OperationMetric
from .core.performance import PerformanceMonitor
from .core.reporting import format_text_report

logger = logging.getLogger(__name__)

_SESSION_METRICS_KEY = pytest.StashKey[list[OperationMetric]]()
_SESSION_CONFIG_KEY = pytest.StashKey[BdtConfig]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("bdt", "BiNDup E2E テスト支援")
    group.addoption(
        "--bdt-config",
        action="store",
        default=None,
        help="bdt 設定ファイル（デフォルト: カレントディレクトリの bdt.yaml）",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.stash[_SESSION_METRICS_KEY] = []


# ---------------------------------------------------------------------------
# フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def bdt_config(pytestconfig: pytest.Config) -> BdtConfig:
    """セッション共通の bdt 設定。"""
    if _SESSION_CONFIG_KEY not in pytestconfig.stash:
        option = pytestconfig.getoption("--bdt-config")
        path = Path(option) if option else None
        try:
            pytestconfig.stash[_SESSION_CONFIG_KEY] = load_config(path)
        except ConfigError as exc:
            raise pytest.UsageError(str(exc)) from exc
    return pytestconfig.stash[_SESSION_CONFIG_KEY]


@pytest.fixture
def metrics_collector(pytestconfig: pytest.Config) -> Iterator[MetricsCollector]:
    """テストごとに新しい MetricsCollector を提供する。

    テスト終了時に記録内容をセッション集計へ追加する。
    """
    collector = MetricsCollector()
    yield collector
    pytestconfig.stash[_SESSION_METRICS_KEY].extend(collector.metrics)


@pytest.fixture
def element_detector(metrics_collector: MetricsCollector, bdt_config: BdtConfig) -> ElementDetector:
    return ElementDetector(
        metrics=metrics_collector,
        candidate_timeout_ms=bdt_config.candidate_timeout_ms,
        settle_ms=bdt_config.settle_ms,
    )


@pytest.fixture
def performance_monitor(metrics_collector: MetricsCollector) -> PerformanceMonitor:
    return PerformanceMonitor(metrics_collector)


@pytest.fixture
def credentials() -> Credentials:
    """環境変数の認証情報。未設定の場合はテストをスキップする。"""
    try:
        return Credentials.from_env()
    except ConfigError as exc:
        pytest.skip(str(exc))


# ---------------------------------------------------------------------------
# ターミナルサマリー
# ---------------------------------------------------------------------------

def pytest_terminal_summary(terminalreporter, exitstatus: int, config: pytest.Config) -> None:
    metrics = config.stash.get(_SESSION_METRICS_KEY, [])
    if not metrics:
        return

    session = MetricsCollector()
    session.extend(metrics)
    bdt = config.stash.get(_SESSION_CONFIG_KEY, None) or BdtConfig()
    report = session.report(bdt.slow_threshold_ms, bdt.slow_top_n)

    terminalreporter.section("bdt metrics")
    for line in format_text_report(report).splitlines():
        terminalreporter.write_line(line)
