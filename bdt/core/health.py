"""
ヘルスチェック — テスト開始前のページ状態確認

ページの応答性、必須要素の存在、JavaScript エラーの有無、再読み込みの可否を
確認する。必須要素の欠落または確認処理自体の失敗のみを異常とし、
JavaScript エラーと再読み込みの失敗は warning にとどめる。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .metrics import MetricsCollector, MetricStatus
from .steplog import log_browser_info, log_step

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

SITE_THEATER_MENU_SELECTOR = "#button-1014"
EDITOR_SELECTOR = '[class*="editor"], [id*="editor"], iframe'


@dataclass(frozen=True)
class EssentialElement:
    selector: str
    name: str


_BASE_ELEMENTS = (
    EssentialElement("body", "Page Body"),
    EssentialElement("html", "HTML Root"),
)


async def perform_health_check(
    page: Page,
    metrics: MetricsCollector,
    browser_name: str,
    timeout_ms: int = 15_000,
) -> bool:
    """ページの状態を確認する。

    Site Theater（メインメニューボタンあり）かサイトエディタかを判定し、
    画面に応じた必須要素の存在を確認する。

    Args:
        page: Playwright の Page オブジェクト
        metrics: 結果を記録する MetricsCollector
        browser_name: ブラウザ名（webkit の場合は追加の待機を行う）
        timeout_ms: networkidle 待機のタイムアウト（ミリ秒）

    Returns:
        すべての必須確認に合格した場合 True
    """
    metric_id = metrics.start("ヘルスチェック", browser_name)
    log_step(logger, "ヘルスチェック", "start", browser_name)

    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        log_step(logger, "ページの応答性を確認しました", "success")
        log_browser_info(logger, browser_name, page.url)

        has_menu = await page.locator(SITE_THEATER_MENU_SELECTOR).count() > 0
        editor_count = await page.locator(EDITOR_SELECTOR).count()
        logger.info(
            "画面判定: URL=%s, メインメニュー=%s, エディタ要素=%d",
            page.url, has_menu, editor_count,
        )

        essentials = list(_BASE_ELEMENTS)
        if has_menu:
            essentials.append(EssentialElement(SITE_THEATER_MENU_SELECTOR, "Main Menu Button"))

        for element in essentials:
            if await page.locator(element.selector).count() == 0:
                log_step(logger, f"必須要素がありません: {element.name}", "error", element.selector)
                metrics.end(metric_id, MetricStatus.FAILED, f"必須要素がありません: {element.name}")
                return False
            log_step(logger, f"必須要素を確認しました: {element.name}", "success")

        js_errors = await page.evaluate("() => window.jsErrors || []")
        if js_errors:
            log_step(logger, "JavaScript エラーを検出しました", "warning", f"{len(js_errors)} 件")
        else:
            log_step(logger, "JavaScript エラーはありません", "success")

        try:
            await page.goto(page.url, wait_until="networkidle", timeout=10_000)
            log_step(logger, "ネットワーク接続を確認しました", "success")
        except Exception as exc:  # noqa: BLE001
            log_step(logger, "ネットワーク接続に問題があります", "warning", str(exc))

        if browser_name.lower() == "webkit":
            await page.wait_for_timeout(2000)

    except Exception as exc:
        log_step(logger, "ヘルスチェック", "error", str(exc))
        metrics.end(metric_id, MetricStatus.FAILED, str(exc))
        return False

    log_step(logger, "ヘルスチェック", "success", "すべての確認に合格しました")
    metrics.end(metric_id, MetricStatus.SUCCESS)
    return True
