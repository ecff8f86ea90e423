"""
性能計測 — 操作時間の計測と閾値判定

操作を包んで所要時間を計測し、期待時間を超えた場合は warning を出力する。
計測結果は MetricsCollector に記録し、操作ごとの統計（平均・最小・最大）も保持する。

主な機能:
  - PerformanceMonitor.monitor(): 操作の計測・閾値判定・メトリクス記録
  - PerformanceMonitor.measure_page_load(): networkidle までの時間計測
  - PerformanceMonitor.measure_element_interaction(): 単一操作の時間計測
  - PerformanceBenchmarks: 操作ごとの計測値の統計
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Literal, Optional, TypeVar

from .metrics import MetricsCollector, MetricStatus
from .steplog import log_operation, log_performance, log_step

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_EXPECTED_DURATION_MS = 30_000

InteractionAction = Literal["click", "hover", "type"]


# ---------------------------------------------------------------------------
# ベンチマーク統計
# ---------------------------------------------------------------------------

@dataclass
class BenchmarkStats:
    """操作ごとの計測値の統計。"""

    operation: str
    average_ms: float
    min_ms: float
    max_ms: float
    count: int


@dataclass
class PerformanceBenchmarks:
    """操作名ごとに計測値を蓄積する。"""

    samples: dict[str, list[float]] = field(default_factory=dict)

    def record(self, operation: str, duration_ms: float) -> None:
        self.samples.setdefault(operation, []).append(duration_ms)

    def stats(self, operation: str) -> Optional[BenchmarkStats]:
        """操作の統計を返す。計測値がなければ None。"""
        durations = self.samples.get(operation)
        if not durations:
            return None
        return BenchmarkStats(
            operation=operation,
            average_ms=sum(durations) / len(durations),
            min_ms=min(durations),
            max_ms=max(durations),
            count=len(durations),
        )

    def all_stats(self) -> list[BenchmarkStats]:
        return [s for s in (self.stats(op) for op in self.samples) if s is not None]

    def log_report(self) -> None:
        logger.info("パフォーマンスベンチマーク")
        for stats in self.all_stats():
            logger.info("  %s:", stats.operation)
            logger.info("    平均: %.0fms", stats.average_ms)
            logger.info("    範囲: %.0fms - %.0fms", stats.min_ms, stats.max_ms)
            logger.info("    サンプル数: %d", stats.count)

    def clear(self) -> None:
        self.samples.clear()


# ---------------------------------------------------------------------------
# PerformanceMonitor 本体
# ---------------------------------------------------------------------------

class PerformanceMonitor:
    """操作の所要時間を計測するクラス。

    使用例::

        monitor = PerformanceMonitor(metrics)
        site = await monitor.monitor(lambda: create_site(page), "サイト作成", 60_000)
    """

    def __init__(
        self,
        metrics: MetricsCollector,
        clock: Callable[[], float] = time.perf_counter,
        benchmarks: Optional[PerformanceBenchmarks] = None,
    ) -> None:
        """PerformanceMonitor を初期化する。

        Args:
            metrics: 計測結果を記録する MetricsCollector
            clock: 経過時間計測用の時計（秒を返す単調時計）
            benchmarks: 計測値の蓄積先（省略時は新規作成）
        """
        self._metrics = metrics
        self._clock = clock
        self.benchmarks = benchmarks if benchmarks is not None else PerformanceBenchmarks()

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000.0

    async def monitor(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        expected_duration_ms: float = DEFAULT_EXPECTED_DURATION_MS,
    ) -> T:
        """操作を実行し、所要時間を計測する。

        所要時間が expected_duration_ms 以内なら success、超過していれば
        warning レベルで性能ログを出力する。操作が例外を送出した場合は
        failed を記録して例外を再送出する。

        Args:
            operation: 引数なしで呼び出す非同期操作
            name: 操作名
            expected_duration_ms: 期待所要時間（ミリ秒）

        Returns:
            操作の戻り値
        """
        metric_id = self._metrics.start(f"パフォーマンス: {name}")
        start = self._clock()

        try:
            result = await operation()
        except Exception as exc:
            duration_ms = self._elapsed_ms(start)
            log_step(
                logger, f"性能計測中に失敗しました: {name}", "error",
                f"所要時間: {duration_ms:.0f}ms, エラー: {exc}",
            )
            self._metrics.end(metric_id, MetricStatus.FAILED, str(exc))
            raise

        duration_ms = self._elapsed_ms(start)
        log_performance(logger, name, duration_ms, expected_duration_ms)
        self.benchmarks.record(name, duration_ms)
        self._metrics.end(metric_id, MetricStatus.SUCCESS)
        return result

    async def measure_page_load(self, page: Page, timeout_ms: int = 30_000) -> float:
        """ネットワークが落ち着くまでの時間（ミリ秒）を返す。"""
        start = self._clock()
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        duration_ms = self._elapsed_ms(start)
        self.benchmarks.record("ページ読み込み", duration_ms)
        return duration_ms

    async def measure_element_interaction(
        self,
        page: Page,
        selector: str,
        action: InteractionAction,
        value: Optional[str] = None,
    ) -> float:
        """要素への単一操作の所要時間（ミリ秒）を返す。

        Args:
            page: Playwright の Page オブジェクト
            selector: 対象要素のセレクタ
            action: click / hover / type
            value: type 時に入力する値

        Raises:
            ValueError: 未知の action の場合
        """
        element = page.locator(selector)
        start = self._clock()

        if action == "click":
            await element.click()
        elif action == "hover":
            await element.hover()
        elif action == "type":
            await element.fill(value or "")
        else:
            raise ValueError(f"未知の操作です: {action}")

        duration_ms = self._elapsed_ms(start)
        self.benchmarks.record(f"{action}: {selector}", duration_ms)
        log_operation(logger, action, selector, "success", duration_ms)
        return duration_ms
