"""
待機戦略 — Playwright auto-wait の補助

Playwright の auto-wait だけでは不十分なケースの待機戦略を提供する。

主な機能:
  - wait_for_visible: 要素の可視化待機（ポーリング）
  - wait_for_network_settle: ネットワーク安定待機（タイムアウトでエラー）
  - wait_for_network_idle: ネットワーク安定待機（タイムアウトでも続行）
  - wait_for_page_ready: readyState とローディング表示の消失待機
  - adaptive_wait: 短い待機 → 再読み込み待ち → 長い待機の2段階待機
  - wait_for_condition: 任意の条件が真になるまでポーリング
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable

from .steplog import log_step

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)

_PAGE_READY_SCRIPT = """() =>
  document.readyState === 'complete' &&
  !document.querySelector('.loading, .spinner, [data-loading="true"]')
"""


# ---------------------------------------------------------------------------
# 要素の可視化待機
# ---------------------------------------------------------------------------

async def wait_for_visible(
    locator: Locator, timeout_ms: int = 5000, poll_ms: int = 100
) -> None:
    """要素が可視になるまで待機する。

    アニメーション完了後に可視状態になるダイアログ等の待機に使用する。
    poll_ms 間隔で locator.is_visible() を確認し、
    タイムアウトまでに可視にならなければ TimeoutError を送出する。

    Args:
        locator: 待機対象の Locator
        timeout_ms: タイムアウト（ミリ秒）
        poll_ms: ポーリング間隔（ミリ秒）

    Raises:
        TimeoutError: タイムアウト時間内に要素が可視にならなかった場合
    """
    start = time.perf_counter()
    deadline_sec = timeout_ms / 1000.0

    while True:
        elapsed = time.perf_counter() - start
        if elapsed >= deadline_sec:
            raise TimeoutError(f"要素が {timeout_ms}ms 以内に可視になりませんでした")

        try:
            if await locator.is_visible():
                logger.debug("要素が可視になりました（%.0fms 経過）", elapsed * 1000)
                return
        except Exception as exc:
            logger.debug("is_visible() チェック中にエラー: %s", exc)

        await asyncio.sleep(poll_ms / 1000.0)


# ---------------------------------------------------------------------------
# ネットワーク安定待機
# ---------------------------------------------------------------------------

async def wait_for_network_settle(page: Page, timeout_ms: int = 5000) -> None:
    """ネットワークが安定するまで待機する。

    Raises:
        TimeoutError: タイムアウト時間内にネットワークが安定しなかった場合
    """
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        logger.debug("ネットワークが安定しました")
    except Exception as exc:
        raise TimeoutError(
            f"ネットワークが {timeout_ms}ms 以内に安定しませんでした: {exc}"
        ) from exc


async def wait_for_network_idle(page: Page, timeout_ms: int = 30_000) -> bool:
    """ネットワークが安定するまで待機する。タイムアウトしても続行する。

    Returns:
        安定した場合 True、タイムアウトした場合 False
    """
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except Exception:  # noqa: BLE001
        log_step(logger, "ネットワーク安定待機がタイムアウトしました", "warning", f"{timeout_ms}ms 後に続行します")
        return False
    log_step(logger, "ネットワークが安定しました", "success")
    return True


# ---------------------------------------------------------------------------
# ページ準備完了待機
# ---------------------------------------------------------------------------

async def wait_for_page_ready(
    page: Page, timeout_ms: int = 30_000, poll_ms: int = 1000
) -> None:
    """document.readyState が complete になり、ローディング表示が消えるまで待機する。

    Raises:
        TimeoutError: タイムアウト時間内に準備が完了しなかった場合
    """
    start = time.perf_counter()
    deadline_sec = timeout_ms / 1000.0

    while time.perf_counter() - start < deadline_sec:
        try:
            if await page.evaluate(_PAGE_READY_SCRIPT):
                log_step(logger, "ページの準備完了を確認しました", "success")
                return
        except Exception as exc:
            log_step(logger, "ページの準備状態の確認に失敗しました", "warning", str(exc))
        await asyncio.sleep(poll_ms / 1000.0)

    raise TimeoutError(f"ページが {timeout_ms}ms 以内に準備完了になりませんでした")


async def adaptive_wait(
    page: Page,
    selector: str,
    description: str,
    quick_timeout_ms: int = 10_000,
    extended_timeout_ms: int = 30_000,
    settle_ms: int = 2000,
) -> None:
    """要素の出現を2段階で待機する。

    まず quick_timeout_ms だけ待機し、見つからなければネットワーク安定と
    settle_ms の待機を挟んで extended_timeout_ms まで待機する。

    Raises:
        playwright.async_api.TimeoutError: 2段階目でも見つからなかった場合
    """
    log_step(logger, f"{description} を待機しています", "start")
    locator = page.locator(selector)
    try:
        await locator.wait_for(timeout=quick_timeout_ms)
        log_step(logger, f"{description} を検出しました", "success")
        return
    except Exception:  # noqa: BLE001
        log_step(logger, f"{description} がすぐに見つかりません。待機を延長します", "warning")

    await page.wait_for_load_state("networkidle")
    await page.wait_for_timeout(settle_ms)

    try:
        await locator.wait_for(timeout=extended_timeout_ms)
    except Exception:
        log_step(logger, f"{description} は延長待機後も見つかりませんでした", "error")
        raise
    log_step(logger, f"{description} を延長待機後に検出しました", "success")


# ---------------------------------------------------------------------------
# 条件待機
# ---------------------------------------------------------------------------

async def wait_for_condition(
    condition: Callable[[], Awaitable[bool]],
    timeout_ms: int = 10_000,
    interval_ms: int = 500,
) -> bool:
    """条件が真になるまでポーリングする。

    Returns:
        タイムアウトまでに条件が真になれば True、ならなければ False
    """
    start = time.perf_counter()
    deadline_sec = timeout_ms / 1000.0

    while time.perf_counter() - start < deadline_sec:
        if await condition():
            return True
        await asyncio.sleep(interval_ms / 1000.0)
    return False
