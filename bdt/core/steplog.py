"""
ステップログ — テスト進行状況のログ出力

テストステップの進行状況を start / success / warning / error の4段階で
ログ出力する。各段階は logging のレベルに対応付ける。

主な機能:
  - SUCCESS: 成功ログ用のカスタムレベル（INFO と WARNING の間）
  - log_step(): ステップ単位のログ出力
  - log_operation() / log_performance(): 操作結果・性能のログ出力
  - log_phase() / log_separator(): フェーズ見出し・区切り線
  - setup_logging(): CLI 用のロギング初期化
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

# ---------------------------------------------------------------------------
# カスタムログレベル
# ---------------------------------------------------------------------------

SUCCESS = 25
"""成功ログのレベル値（INFO=20 と WARNING=30 の間）。"""

logging.addLevelName(SUCCESS, "SUCCESS")

StepStatus = Literal["start", "success", "warning", "error"]

_LEVELS: dict[str, int] = {
    "start": logging.INFO,
    "success": SUCCESS,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_LOG_FORMAT = "[%(asctime)s] %(levelname)-7s %(name)s - %(message)s"
_DATE_FORMAT = "%H:%M:%S"


# ---------------------------------------------------------------------------
# ステップログ
# ---------------------------------------------------------------------------

def log_step(
    logger: logging.Logger,
    step: str,
    status: StepStatus,
    details: Optional[str] = None,
) -> None:
    """ステップの進行状況を出力する。

    Args:
        logger: 出力先のロガー
        step: ステップ名
        status: start / success / warning / error
        details: 補足情報（指定時は " - " で連結）
    """
    level = _LEVELS[status]
    if details:
        logger.log(level, "%s - %s", step, details)
    else:
        logger.log(level, "%s", step)


def log_operation(
    logger: logging.Logger,
    operation: str,
    target: str,
    result: Literal["success", "failed"],
    duration_ms: Optional[float] = None,
) -> None:
    """操作の結果を出力する。"""
    details = f"{duration_ms:.0f}ms" if duration_ms is not None else None
    status: StepStatus = "success" if result == "success" else "error"
    log_step(logger, f"{operation} on {target}", status, details)


def log_performance(
    logger: logging.Logger,
    operation: str,
    duration_ms: float,
    threshold_ms: float,
) -> None:
    """操作時間を閾値と比較して出力する。

    閾値以内なら success、超過していれば warning レベルで出力する。
    """
    status: StepStatus = "success" if duration_ms <= threshold_ms else "warning"
    log_step(
        logger,
        "Performance",
        status,
        f"{operation} が {duration_ms:.0f}ms で完了（閾値: {threshold_ms:.0f}ms）",
    )


def log_browser_info(logger: logging.Logger, browser_name: str, url: str) -> None:
    log_step(logger, f"Browser: {browser_name}", "start", f"URL: {url}")


def log_phase(logger: logging.Logger, phase: str, description: str) -> None:
    log_separator(logger)
    logger.info("%s: %s", phase.upper(), description)
    log_separator(logger)


def log_separator(logger: logging.Logger, width: int = 80) -> None:
    logger.info("%s", "─" * width)


# ---------------------------------------------------------------------------
# ロギング初期化
# ---------------------------------------------------------------------------

def setup_logging(verbose: bool = False) -> None:
    """CLI 実行時のロギングを初期化する。

    Args:
        verbose: True の場合 DEBUG レベルまで出力する
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
    )
