"""
リトライ実行 — 指数バックオフ付きの再試行

失敗しうる非同期操作を上限回数まで再試行する。失敗の種類（タイムアウト、
要素未検出、アサーション失敗など）は区別せず、例外はすべて同様に扱う。

試行 n 回目の失敗後の待機時間は base_delay_ms × 2^(n−1)。

主な機能:
  - execute_with_retry(): 試行ごとのログとメトリクス記録付きの再試行
  - retry_with_backoff(): ログを最小限にした再試行（元の例外をそのまま送出）
  - backoff_delay() / backoff_schedule(): 待機時間の計算
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .metrics import MetricsCollector, MetricStatus
from .steplog import log_step

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 2000

Sleep = Callable[[float], Awaitable[object]]


# ---------------------------------------------------------------------------
# エラー定義
# ---------------------------------------------------------------------------

class RetryExhaustedError(Exception):
    """上限回数まで再試行しても成功しなかった場合のエラー。

    Attributes:
        description: 操作の説明
        attempts: 試行した回数
        last_error: 最後の試行で発生した例外
    """

    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description}: {attempts} 回の試行後に失敗しました: {last_error}")


# ---------------------------------------------------------------------------
# 待機時間の計算
# ---------------------------------------------------------------------------

def backoff_delay(attempt: int, base_delay_ms: float) -> float:
    """attempt 回目の失敗後の待機時間（ミリ秒）を返す。"""
    if attempt < 1:
        raise ValueError(f"attempt は 1 以上を指定してください: {attempt}")
    return base_delay_ms * 2 ** (attempt - 1)


def backoff_schedule(max_retries: int, base_delay_ms: float) -> list[float]:
    """全試行が失敗した場合の待機時間の列を返す（要素数 max_retries − 1）。"""
    return [backoff_delay(n, base_delay_ms) for n in range(1, max_retries)]


# ---------------------------------------------------------------------------
# 再試行
# ---------------------------------------------------------------------------

async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    description: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    *,
    metrics: Optional[MetricsCollector] = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """操作を実行し、失敗時は指数バックオフで再試行する。

    成功した時点で結果を返し、以降の試行は行わない。
    途中の失敗は warning、上限到達時のみ error としてログに出力する。

    Args:
        operation: 引数なしで呼び出す非同期操作
        description: 操作の説明（ログ・メトリクス・エラーメッセージ用）
        max_retries: 最大試行回数
        base_delay_ms: 初回失敗後の待機時間（ミリ秒）
        metrics: 結果を記録する MetricsCollector（任意）
        sleep: 待機関数（秒を受け取る。テスト時に差し替え可能）

    Returns:
        操作の戻り値

    Raises:
        RetryExhaustedError: max_retries 回すべて失敗した場合（最後の例外を __cause__ に保持）
        ValueError: max_retries が 1 未満の場合
    """
    if max_retries < 1:
        raise ValueError(f"max_retries は 1 以上を指定してください: {max_retries}")

    metric_id = metrics.start(f"リトライ操作: {description}") if metrics else None

    for attempt in range(1, max_retries + 1):
        log_step(logger, f"{description} (試行 {attempt}/{max_retries})", "start")
        try:
            result = await operation()
        except Exception as exc:
            log_step(logger, f"{description}: 試行 {attempt} が失敗しました", "warning", str(exc))

            if attempt == max_retries:
                log_step(
                    logger, f"{description}: {max_retries} 回の試行後に失敗しました",
                    "error", str(exc),
                )
                if metrics and metric_id:
                    metrics.end(
                        metric_id, MetricStatus.FAILED,
                        f"{max_retries} 回の試行後に失敗: {exc}",
                    )
                raise RetryExhaustedError(description, max_retries, exc) from exc

            delay = backoff_delay(attempt, base_delay_ms)
            log_step(logger, f"{delay:.0f}ms 待機してから再試行します", "start")
            await sleep(delay / 1000.0)
            continue

        log_step(logger, f"{description}: 試行 {attempt} で成功しました", "success")
        if metrics and metric_id:
            metrics.end(metric_id, MetricStatus.SUCCESS)
        return result

    # max_retries >= 1 のためここには到達しない
    raise AssertionError("unreachable")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: float = 1000,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """操作を再試行し、上限到達時は最後の例外をそのまま送出する。"""
    if max_retries < 1:
        raise ValueError(f"max_retries は 1 以上を指定してください: {max_retries}")

    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt == max_retries:
                raise
            delay = backoff_delay(attempt, base_delay_ms)
            logger.warning("試行 %d が失敗しました。%.0fms 後に再試行します: %s", attempt, delay, exc)
            await sleep(delay / 1000.0)

    raise AssertionError("unreachable")
