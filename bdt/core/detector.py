"""
要素検出 — フォールバック付きセレクタ解決

UI の変更で特定のセレクタが使えなくなっても操作を継続できるよう、
プライマリセレクタとフォールバック候補を順に試行して要素を特定する。

主な機能:
  - find_element(): 候補を上から順に試行し、最初に可視になった要素を返す
  - find_elements(): 候補のいずれかに一致する要素をすべて集める
  - force_click(): DOM イベントによるクリック（CSS で非表示の要素向け）
  - wait_for_any(): 複数候補のいずれかが可視になるまでポーリング
  - is_any_visible(): 複数候補のいずれかが可視かどうかを判定
  - generate_text_variations(): 英語の要素説明から日本語 UI ラベル候補を生成
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

from .metrics import MetricsCollector, MetricStatus
from .selector import SelectorLike, build_locator, describe_selector, to_selector
from .steplog import log_step

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_TIMEOUT_MS = 3000
DEFAULT_SETTLE_MS = 1000

_FORCE_CLICK_SCRIPT = """el => {
  if (el && typeof el.click === 'function') {
    el.click();
  } else {
    el.dispatchEvent(new MouseEvent('click', { bubbles: true, cancelable: true }));
  }
}"""

# 英語キーワード → BiNDup の UI ラベル
_JAPANESE_LABELS: dict[str, list[str]] = {
    "menu": ["メニュー", "MENU"],
    "edit": ["編集", "エディット"],
    "page": ["ページ", "PAGE"],
    "design": ["デザイン", "DESIGN"],
    "save": ["保存", "セーブ"],
    "close": ["閉じる", "クローズ"],
    "complete": ["完了", "コンプリート"],
    "back": ["戻る", "バック"],
    "create": ["作成", "新規作成"],
    "template": ["テンプレート", "TEMPLATE"],
    "corner": ["コーナー", "角"],
    "block": ["ブロック", "BLOCK"],
    "add": ["追加", "ADD"],
    "delete": ["削除", "DELETE"],
    "duplicate": ["複製", "DUPLICATE"],
    "move": ["移動", "MOVE"],
}

_ROLE_FALLBACKS = ("button", "link", "menuitem")


# ---------------------------------------------------------------------------
# エラー定義
# ---------------------------------------------------------------------------

@dataclass
class CandidateFailure:
    """検出に失敗した候補の情報。

    Attributes:
        index: 候補リスト内のインデックス（0 がプライマリ）
        selector_desc: セレクタの説明文字列
        reason: 失敗理由
    """

    index: int
    selector_desc: str
    reason: str


class ElementNotFoundError(Exception):
    """全候補で要素が見つからなかった場合のエラー。"""

    def __init__(self, description: str, failures: list[CandidateFailure]) -> None:
        self.description = description
        self.failures = failures
        details = "\n".join(
            f"  [{f.index}] {f.selector_desc}: {f.reason}" for f in failures
        )
        super().__init__(
            f"要素が見つかりません: {description}（全 {len(failures)} 候補）\n"
            f"試行結果:\n{details}"
        )


# ---------------------------------------------------------------------------
# ElementDetector 本体
# ---------------------------------------------------------------------------

@dataclass
class ElementDetector:
    """フォールバック付きの要素検出クラス。

    Attributes:
        metrics: 検出結果を記録する MetricsCollector
        candidate_timeout_ms: 候補1件あたりの可視化待機時間（ミリ秒）
        settle_ms: force_click 後の UI 反映待ち時間（ミリ秒）
    """

    metrics: MetricsCollector = field(default_factory=MetricsCollector)
    candidate_timeout_ms: int = DEFAULT_CANDIDATE_TIMEOUT_MS
    settle_ms: int = DEFAULT_SETTLE_MS

    # -------------------------------------------------------------------
    # 単一要素の検出
    # -------------------------------------------------------------------

    async def find_element(
        self,
        page: Page,
        description: str,
        primary: SelectorLike,
        fallbacks: Sequence[SelectorLike] = (),
        *,
        text_fallback: bool = False,
    ) -> Locator:
        """プライマリ → フォールバックの順に候補を試行し、要素を返す。

        各候補について最初に一致した要素が candidate_timeout_ms 以内に
        可視になるかを確認し、最初に可視になった候補を採用する。
        採用した時点で後続の候補は試行しない。
        不正なセレクタは「見つからない」として扱い、次の候補へ進む。

        Args:
            page: Playwright の Page オブジェクト
            description: 要素の説明（ログ・メトリクス用）
            primary: プライマリセレクタ
            fallbacks: フォールバックセレクタ（優先度順）
            text_fallback: True の場合、全候補の失敗後にテキスト・ロールでの検出を試行する

        Returns:
            検出された要素の Locator

        Raises:
            ElementNotFoundError: 全候補で要素が可視にならなかった場合
        """
        metric_id = self.metrics.start(f"要素検出: {description}")
        candidates = [primary, *fallbacks]
        failures: list[CandidateFailure] = []

        for idx, raw in enumerate(candidates):
            kind = "プライマリ" if idx == 0 else "フォールバック"
            desc = _describe_raw(raw)
            log_step(logger, f"{kind}セレクタを試行: {desc}", "start")
            try:
                selector = to_selector(raw)
                desc = describe_selector(selector)
                locator = build_locator(page, selector).first
                await locator.wait_for(
                    state="visible", timeout=self.candidate_timeout_ms,
                )
            except Exception as exc:  # noqa: BLE001
                reason = _first_line(exc)
                failures.append(CandidateFailure(index=idx, selector_desc=desc, reason=reason))
                log_step(logger, f"{kind}セレクタで見つかりません: {desc}", "warning", reason)
                continue

            log_step(logger, f"{kind}セレクタで検出しました: {desc}", "success", description)
            self.metrics.end(metric_id, MetricStatus.SUCCESS)
            return locator

        if text_fallback:
            locator = await self._find_by_text_or_role(page, description, failures)
            if locator is not None:
                self.metrics.end(metric_id, MetricStatus.SUCCESS)
                return locator

        error = ElementNotFoundError(description, failures)
        log_step(logger, "要素検出に失敗しました", "error", description)
        self.metrics.end(metric_id, MetricStatus.FAILED, f"要素が見つかりません: {description}")
        raise error

    async def _find_by_text_or_role(
        self,
        page: Page,
        description: str,
        failures: list[CandidateFailure],
    ) -> Locator | None:
        """テキスト表記ゆれ → ARIA ロールの順で要素を探す。

        失敗した試行は failures に追記する。
        """
        for text in generate_text_variations(description):
            log_step(logger, f"テキストで検出を試行: {text}", "start")
            try:
                locator = page.get_by_text(text).first
                await locator.wait_for(state="visible", timeout=self.candidate_timeout_ms)
            except Exception as exc:  # noqa: BLE001
                failures.append(CandidateFailure(
                    index=len(failures), selector_desc=f"text='{text}'", reason=_first_line(exc),
                ))
                continue
            log_step(logger, f"テキストで検出しました: {text}", "success")
            return locator

        pattern = re.compile(re.escape(description), re.IGNORECASE)
        for role in _ROLE_FALLBACKS:
            log_step(logger, f"ロールで検出を試行: {role}", "start")
            try:
                locator = page.get_by_role(role, name=pattern).first
                await locator.wait_for(state="visible", timeout=self.candidate_timeout_ms)
            except Exception as exc:  # noqa: BLE001
                failures.append(CandidateFailure(
                    index=len(failures),
                    selector_desc=f"role='{role}', name=/{description}/i",
                    reason=_first_line(exc),
                ))
                continue
            log_step(logger, f"ロールで検出しました: {role}", "success")
            return locator

        return None

    # -------------------------------------------------------------------
    # 複数要素の収集
    # -------------------------------------------------------------------

    async def find_elements(
        self,
        page: Page,
        description: str,
        selectors: Sequence[SelectorLike],
    ) -> list[Locator]:
        """候補セレクタのいずれかに一致する要素をすべて集める。

        1件以上一致したセレクタの Locator をセレクタ順に返す。
        失敗したセレクタはログに記録して読み飛ばす。

        Args:
            page: Playwright の Page オブジェクト
            description: 要素の説明（ログ用）
            selectors: 候補セレクタ

        Returns:
            一致した Locator のリスト（一致なしの場合は空リスト）
        """
        found: list[Locator] = []
        for raw in selectors:
            desc = _describe_raw(raw)
            try:
                selector = to_selector(raw)
                desc = describe_selector(selector)
                locator = build_locator(page, selector)
                count = await locator.count()
            except Exception as exc:  # noqa: BLE001
                log_step(logger, f"セレクタの評価に失敗しました: {desc}", "warning", _first_line(exc))
                continue
            if count > 0:
                found.append(locator)
                log_step(logger, f"{count} 件の要素を検出しました: {desc}", "success", description)

        logger.debug("%s: %d 個のセレクタが一致しました", description, len(found))
        return found

    # -------------------------------------------------------------------
    # 強制クリック
    # -------------------------------------------------------------------

    async def force_click(self, page: Page, locator: Locator, description: str) -> None:
        """DOM イベントで要素をクリックする。

        CSS で非表示になっているが操作可能な要素向け。
        JavaScript の click() が失敗した場合は Playwright の
        click(force=True) にフォールバックする。

        Args:
            page: Playwright の Page オブジェクト
            locator: クリック対象の Locator
            description: 要素の説明（ログ用）

        Raises:
            Exception: 両方のクリック方法が失敗した場合（最後のエラーを再送出）
        """
        log_step(logger, f"強制クリック: {description}", "start")
        try:
            await locator.evaluate(_FORCE_CLICK_SCRIPT)
        except Exception as exc:  # noqa: BLE001
            log_step(logger, f"強制クリックに失敗しました: {description}", "warning", _first_line(exc))
            try:
                await locator.click(force=True)
            except Exception as fallback_exc:
                log_step(
                    logger, f"すべてのクリック方法が失敗しました: {description}",
                    "error", _first_line(fallback_exc),
                )
                raise
            log_step(logger, f"フォールバックの強制クリックに成功しました: {description}", "success")
            return

        log_step(logger, f"強制クリックに成功しました: {description}", "success")
        await page.wait_for_timeout(self.settle_ms)

    # -------------------------------------------------------------------
    # 可視判定
    # -------------------------------------------------------------------

    async def wait_for_any(
        self,
        page: Page,
        selectors: Sequence[SelectorLike],
        timeout_ms: int = 30_000,
        poll_ms: int = 1000,
    ) -> Locator:
        """候補のいずれかが可視になるまでポーリングする。

        Raises:
            TimeoutError: timeout_ms 以内にどの候補も可視にならなかった場合
        """
        candidates = [to_selector(s) for s in selectors]
        start = time.perf_counter()
        deadline_sec = timeout_ms / 1000.0

        while True:
            for selector in candidates:
                try:
                    locator = build_locator(page, selector).first
                    if await locator.is_visible():
                        log_step(logger, f"要素を検出しました: {describe_selector(selector)}", "success")
                        return locator
                except Exception as exc:  # noqa: BLE001
                    logger.debug("is_visible() チェック中にエラー: %s", exc)

            if time.perf_counter() - start >= deadline_sec:
                joined = ", ".join(describe_selector(s) for s in candidates)
                raise TimeoutError(
                    f"{timeout_ms}ms 以内にいずれの要素も見つかりませんでした: {joined}"
                )
            await asyncio.sleep(poll_ms / 1000.0)

    async def is_any_visible(
        self,
        page: Page,
        selectors: Sequence[SelectorLike],
        timeout_ms: int = 2000,
    ) -> bool:
        """候補のいずれかが timeout_ms 以内に可視になるかを返す。"""
        for raw in selectors:
            try:
                locator = build_locator(page, to_selector(raw)).first
                await locator.wait_for(state="visible", timeout=timeout_ms)
                return True
            except Exception:  # noqa: BLE001
                continue
        return False


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def generate_text_variations(text: str) -> list[str]:
    """要素の説明文から、テキスト検出に使う表記候補を生成する。

    説明文そのものに加えて、含まれる英語キーワードに対応する
    日本語 UI ラベルを追加する。

    Args:
        text: 要素の説明（例: "Save button"）

    Returns:
        表記候補（先頭は説明文そのもの）
    """
    variations = [text]
    lowered = text.lower()
    for english, labels in _JAPANESE_LABELS.items():
        if english in lowered:
            variations.extend(labels)
    return variations


def _describe_raw(value: SelectorLike) -> str:
    if isinstance(value, str):
        return f"css='{value}'"
    try:
        return describe_selector(to_selector(value))
    except Exception:  # noqa: BLE001
        return repr(value)


def _first_line(exc: BaseException) -> str:
    """例外メッセージの1行目を返す（Playwright のログ部分を省く）。"""
    message = str(exc).strip()
    return message.splitlines()[0] if message else type(exc).__name__
