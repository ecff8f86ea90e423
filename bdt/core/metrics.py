"""
メトリクス収集 — 操作単位の計測記録と集計レポート

テスト中の各操作（要素検出、リトライ、性能計測など）の開始・終了を記録し、
テストケース終了時に成功率・平均所要時間・低速操作を集計する。

MetricsCollector は呼び出し側が生成して各コンポーネントへ渡す。
プロセス全体で共有する静的な状態は持たない。

主な機能:
  - start() / end(): 操作の開始・終了の記録
  - track(): 開始・終了を自動記録する async コンテキストマネージャ
  - report(): 成功率・平均所要時間・低速操作の集計
  - log_report(): 集計結果のログ出力
"""

from __future__ import annotations

import logging
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Iterable, Optional

from .steplog import log_step

logger = logging.getLogger(__name__)

DEFAULT_SLOW_THRESHOLD_MS = 30_000
"""低速操作と判定する所要時間（ミリ秒）。"""

DEFAULT_SLOW_TOP_N = 3


def _now_ms() -> float:
    return time.time() * 1000.0


def _monotonic_ms() -> float:
    return time.perf_counter() * 1000.0


# ---------------------------------------------------------------------------
# データクラス
# ---------------------------------------------------------------------------

class MetricStatus(str, Enum):
    """操作メトリクスの状態。"""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class OperationMetric:
    """単一操作の計測記録。

    Attributes:
        id: 開始時に払い出される識別子
        operation: 操作名
        start_time: 開始時刻（エポックミリ秒）
        end_time: 終了時刻（終了するまで None）
        duration_ms: 所要時間（終了するまで None）
        status: running / success / failed
        error: 失敗時のエラーメッセージ
        browser: ブラウザ名
    """

    id: str
    operation: str
    start_time: float
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    status: MetricStatus = MetricStatus.RUNNING
    error: Optional[str] = None
    browser: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not MetricStatus.RUNNING


@dataclass
class MetricsReport:
    """メトリクスの集計結果。

    Attributes:
        total: 記録された操作数
        succeeded: 成功した操作数
        failed: 失敗した操作数
        running: 実行中のまま残っている操作数
        success_rate: 終了済み操作に占める成功の割合（%）。終了済みが0件なら 0.0
        average_duration_ms: 所要時間が記録された操作の平均（ミリ秒）
        failures: 失敗した操作の (操作名, エラー) リスト
        slow_operations: 低速操作の (操作名, 所要時間) リスト（降順、上位 N 件）
        slow_threshold_ms: 低速判定の閾値
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    running: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    failures: list[tuple[str, str]] = field(default_factory=list)
    slow_operations: list[tuple[str, float]] = field(default_factory=list)
    slow_threshold_ms: float = DEFAULT_SLOW_THRESHOLD_MS

    @property
    def terminal(self) -> int:
        return self.succeeded + self.failed


# ---------------------------------------------------------------------------
# MetricsCollector 本体
# ---------------------------------------------------------------------------

class MetricsCollector:
    """操作メトリクスの収集クラス。

    テストケースごとにインスタンスを生成して使用する。
    記録は追記のみで、終了時に一度だけ running から終端状態へ遷移する。

    使用例::

        metrics = MetricsCollector()
        metric_id = metrics.start("サイト作成", browser="chromium")
        ...
        metrics.end(metric_id, "success")
        report = metrics.report()
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        timer: Optional[Callable[[], float]] = None,
    ) -> None:
        """MetricsCollector を初期化する。

        start_time / end_time は clock の時刻、duration_ms は timer の差分で記録する。

        Args:
            clock: 現在時刻（エポックミリ秒）を返す関数。省略時は time.time()
            timer: 単調増加するミリ秒を返す関数。省略時は clock を指定していれば clock、
                どちらも省略時は time.perf_counter()
        """
        self._clock = clock or _now_ms
        self._timer = timer or clock or _monotonic_ms
        self._metrics: list[OperationMetric] = []
        self._timer_starts: dict[str, float] = {}

    # -------------------------------------------------------------------
    # 記録
    # -------------------------------------------------------------------

    def start(self, operation: str, browser: Optional[str] = None) -> str:
        """操作の開始を記録し、識別子を返す。

        Args:
            operation: 操作名
            browser: ブラウザ名（任意）

        Returns:
            end() に渡す識別子
        """
        started = self._clock()
        metric_id = f"{operation}-{int(started)}-{secrets.token_hex(5)}"
        self._metrics.append(OperationMetric(
            id=metric_id,
            operation=operation,
            start_time=started,
            browser=browser,
        ))
        self._timer_starts[metric_id] = self._timer()
        log_step(logger, f"開始: {operation}", "start", browser)
        return metric_id

    def end(
        self,
        metric_id: str,
        status: MetricStatus | str,
        error: Optional[str] = None,
    ) -> None:
        """操作の終了を記録する。

        未知の識別子、または既に終了済みの操作に対する呼び出しは何もしない。

        Args:
            metric_id: start() が返した識別子
            status: success または failed
            error: 失敗時のエラーメッセージ

        Raises:
            ValueError: status が終端状態でない場合
        """
        status = MetricStatus(status)
        if status is MetricStatus.RUNNING:
            raise ValueError("end() には success または failed を指定してください")

        metric = self._find(metric_id)
        if metric is None:
            logger.debug("未知のメトリクス ID のため無視します: %s", metric_id)
            return
        if metric.is_terminal:
            logger.debug("終了済みのメトリクスのため無視します: %s", metric_id)
            return

        timer_start = self._timer_starts.pop(metric_id, None)
        if timer_start is None:
            # extend() で取り込んだ記録には計測開始値がない
            elapsed = self._clock() - metric.start_time
        else:
            elapsed = self._timer() - timer_start
        # 時計が巻き戻っても start <= end を保つ
        metric.duration_ms = max(elapsed, 0.0)
        metric.end_time = metric.start_time + metric.duration_ms
        metric.status = status
        metric.error = error

        logger.debug(
            "終了: %s (%s, %.0fms)",
            metric.operation, status.value, metric.duration_ms,
        )

    @asynccontextmanager
    async def track(
        self, operation: str, browser: Optional[str] = None
    ) -> AsyncIterator[str]:
        """ブロックの実行を1操作として記録する。

        正常終了で success、例外発生で failed を記録し、例外は再送出する。
        """
        metric_id = self.start(operation, browser)
        try:
            yield metric_id
        except Exception as exc:
            self.end(metric_id, MetricStatus.FAILED, str(exc))
            raise
        self.end(metric_id, MetricStatus.SUCCESS)

    def clear(self) -> None:
        """記録をすべて破棄する。"""
        self._metrics = []
        self._timer_starts = {}

    def extend(self, metrics: Iterable[OperationMetric]) -> None:
        """他の MetricsCollector の記録を取り込む（セッション単位の集計用）。"""
        self._metrics.extend(metrics)

    # -------------------------------------------------------------------
    # 参照・集計
    # -------------------------------------------------------------------

    @property
    def metrics(self) -> list[OperationMetric]:
        """記録のコピーを返す。"""
        return list(self._metrics)

    def success_rate(self) -> float:
        """終了済み操作に占める成功の割合（%）を返す。"""
        succeeded = sum(1 for m in self._metrics if m.status is MetricStatus.SUCCESS)
        terminal = sum(1 for m in self._metrics if m.is_terminal)
        return succeeded / terminal * 100 if terminal else 0.0

    def report(
        self,
        slow_threshold_ms: float = DEFAULT_SLOW_THRESHOLD_MS,
        top_n: int = DEFAULT_SLOW_TOP_N,
    ) -> MetricsReport:
        """記録を集計する。

        Args:
            slow_threshold_ms: 低速操作と判定する所要時間（ミリ秒）
            top_n: 低速操作として列挙する最大件数

        Returns:
            集計結果
        """
        succeeded = [m for m in self._metrics if m.status is MetricStatus.SUCCESS]
        failed = [m for m in self._metrics if m.status is MetricStatus.FAILED]
        running = [m for m in self._metrics if m.status is MetricStatus.RUNNING]
        durations = [m.duration_ms for m in self._metrics if m.duration_ms is not None]

        slow = sorted(
            (m for m in self._metrics
             if m.duration_ms is not None and m.duration_ms > slow_threshold_ms),
            key=lambda m: m.duration_ms,
            reverse=True,
        )

        return MetricsReport(
            total=len(self._metrics),
            succeeded=len(succeeded),
            failed=len(failed),
            running=len(running),
            success_rate=self.success_rate(),
            average_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            failures=[(m.operation, m.error or "不明なエラー") for m in failed],
            slow_operations=[(m.operation, m.duration_ms) for m in slow[:top_n]],
            slow_threshold_ms=slow_threshold_ms,
        )

    def log_report(self, report: Optional[MetricsReport] = None) -> MetricsReport:
        """集計結果をログに出力する。

        Args:
            report: 出力する集計結果（省略時は report() の結果）

        Returns:
            出力した集計結果
        """
        if report is None:
            report = self.report()

        logger.info("テストメトリクスレポート")
        logger.info(
            "  成功率: %.1f%% (%d/%d)",
            report.success_rate, report.succeeded, report.terminal,
        )
        logger.info("  平均所要時間: %.0fms", report.average_duration_ms)
        logger.info("  総操作数: %d", report.total)
        logger.info("  実行中: %d", report.running)

        if report.failures:
            logger.info("  失敗した操作:")
            for operation, error in report.failures:
                logger.info("    - %s: %s", operation, error)

        if report.slow_operations:
            logger.info("  低速な操作 (>%.0fs):", report.slow_threshold_ms / 1000)
            for operation, duration in report.slow_operations:
                logger.info("    - %s: %.0fms", operation, duration)

        return report

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    def _find(self, metric_id: str) -> Optional[OperationMetric]:
        for metric in self._metrics:
            if metric.id == metric_id:
                return metric
        return None
