"""
ポップアップ処理 — 操作を妨げるダイアログの検出と除去

BiNDup ではログイン直後のスタートガイドや各種ダイアログが操作を妨げるため、
検出したら閉じる。単発の確認に加えて、バックグラウンドで定期的に確認する
監視モードも提供する（同じイベントループ上のタスクとして動作する）。

主な機能:
  - dismiss_start_guide(): スタートガイドを閉じる
  - dismiss_generic_popups(): 汎用ダイアログを閉じる
  - wait_for_progress_bars(): 進捗表示が消えるまで待機
  - handle_post_click(): クリック後のポップアップ・進捗表示の処理
  - start_monitoring() / stop_monitoring() / monitoring(): 定期監視
  - navigate(): 監視しながらページ遷移
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from .steplog import log_step

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

START_GUIDE_SELECTOR = "#id-notice-news-window"

START_GUIDE_CLOSE_SELECTORS = (
    "#button-1014",
    ".close-button",
    '[aria-label="Close"]',
    '[aria-label="閉じる"]',
    'button:has-text("閉じる")',
    'button:has-text("Close")',
    ".popup-close",
    ".modal-close",
)

GENERIC_POPUP_SELECTORS = (
    ".modal:visible",
    ".popup:visible",
    ".dialog:visible",
    '[role="dialog"]:visible',
    ".overlay:visible",
)

_GENERIC_CLOSE_SELECTOR = (
    'button:has-text("閉じる"), button:has-text("Close"), '
    '.close, .close-btn, [aria-label="Close"]'
)

PROGRESS_SELECTORS = (
    ".progress-bar",
    ".loading",
    ".spinner",
    '[role="progressbar"]',
    ".cs-progress",
)

DEFAULT_MONITOR_INTERVAL_MS = 500


class PopupHandler:
    """ページ上のポップアップを検出して閉じる。

    使用例::

        handler = PopupHandler(page)
        async with handler.monitoring():
            await page.click("#id-create-site")
    """

    def __init__(
        self,
        page: Page,
        interval_ms: int = DEFAULT_MONITOR_INTERVAL_MS,
        click_timeout_ms: int = 1000,
    ) -> None:
        self._page = page
        self._interval_ms = interval_ms
        self._click_timeout_ms = click_timeout_ms
        self._task: Optional[asyncio.Task] = None

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------------
    # 単発の検出・除去
    # -------------------------------------------------------------------

    async def dismiss_start_guide(self) -> bool:
        """スタートガイドが表示されていれば閉じる。

        閉じるボタンの候補を順に試し、どれも使えなければ Escape キーを送る。

        Returns:
            スタートガイドを検出した場合 True
        """
        if not await self._page.locator(START_GUIDE_SELECTOR).is_visible():
            return False

        log_step(logger, "スタートガイドを検出しました。閉じます", "start")
        for selector in START_GUIDE_CLOSE_SELECTORS:
            button = self._page.locator(selector).first
            try:
                if await button.is_visible():
                    await button.click(timeout=self._click_timeout_ms)
                    log_step(logger, f"スタートガイドを閉じました: {selector}", "success")
                    return True
            except Exception as exc:  # noqa: BLE001
                logger.debug("閉じるボタンの操作に失敗しました (%s): %s", selector, exc)

        await self._page.keyboard.press("Escape")
        log_step(logger, "Escape キーでスタートガイドを閉じました", "success")
        return True

    async def dismiss_generic_popups(self) -> int:
        """汎用ダイアログを検出し、閉じるボタンがあれば押す。

        Returns:
            閉じたダイアログの数
        """
        closed = 0
        for selector in GENERIC_POPUP_SELECTORS:
            popup = self._page.locator(selector).first
            try:
                if not await popup.is_visible():
                    continue
                button = popup.locator(_GENERIC_CLOSE_SELECTOR).first
                if await button.is_visible():
                    await button.click(timeout=self._click_timeout_ms)
                    closed += 1
                    log_step(logger, f"ダイアログを閉じました: {selector}", "success")
            except Exception as exc:  # noqa: BLE001
                logger.debug("ダイアログの処理に失敗しました (%s): %s", selector, exc)
        return closed

    async def wait_for_progress_bars(self, timeout_ms: int = 30_000) -> int:
        """表示中の進捗表示が消えるまで待機する。

        Returns:
            待機した進捗表示の数
        """
        waited = 0
        for selector in PROGRESS_SELECTORS:
            progress = self._page.locator(selector).first
            try:
                if not await progress.is_visible():
                    continue
                log_step(logger, f"進捗表示の完了を待機しています: {selector}", "start")
                await progress.wait_for(state="hidden", timeout=timeout_ms)
                waited += 1
                log_step(logger, f"進捗表示が完了しました: {selector}", "success")
            except Exception as exc:  # noqa: BLE001
                log_step(logger, f"進捗表示の待機に失敗しました: {selector}", "warning", str(exc))
        return waited

    async def handle_post_click(self) -> None:
        """クリック後に現れるスタートガイドと進捗表示を処理する。"""
        await self.dismiss_start_guide()
        await self.wait_for_progress_bars()

    async def dismiss_all(self) -> None:
        await self.dismiss_start_guide()
        await self.dismiss_generic_popups()

    # -------------------------------------------------------------------
    # 定期監視
    # -------------------------------------------------------------------

    async def start_monitoring(self, interval_ms: Optional[int] = None) -> None:
        """バックグラウンドでの定期監視を開始する。既に監視中なら何もしない。

        Args:
            interval_ms: 確認間隔（ミリ秒）。省略時はコンストラクタの値
        """
        if interval_ms is not None:
            self._interval_ms = interval_ms
        if self.is_monitoring:
            logger.debug("ポップアップ監視は既に開始されています")
            return
        self._task = asyncio.create_task(self._monitor_loop())
        log_step(logger, "ポップアップ監視を開始しました", "start")

    async def stop_monitoring(self) -> None:
        """定期監視を停止する。"""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # 呼び出し側自身の取り消しは伝播させる
            current = asyncio.current_task()
            if not task.cancelled() or (current is not None and current.cancelling()):
                raise
        logger.info("ポップアップ監視を停止しました")

    @asynccontextmanager
    async def monitoring(self) -> AsyncIterator[PopupHandler]:
        """ブロックの実行中だけ定期監視を行う。"""
        await self.start_monitoring()
        try:
            yield self
        finally:
            await self.stop_monitoring()

    async def _monitor_loop(self) -> None:
        while True:
            try:
                await self.dismiss_all()
            except Exception as exc:  # noqa: BLE001
                logger.warning("ポップアップ監視中にエラーが発生しました（続行）: %s", exc)
            await asyncio.sleep(self._interval_ms / 1000.0)

    # -------------------------------------------------------------------
    # ページ遷移
    # -------------------------------------------------------------------

    async def navigate(self, url: str, settle_ms: int = 2000) -> None:
        """監視を開始してからページを遷移する。監視は遷移後も継続する。"""
        await self.start_monitoring()
        await self._page.goto(url, wait_until="networkidle")
        await self._page.wait_for_timeout(settle_ms)
