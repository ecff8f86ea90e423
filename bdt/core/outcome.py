"""
操作結果 — 「操作した / 対象なし / 失敗」の3状態

UI の変更で対象の操作部品が見つからないことを許容するワークフロー
（画像削除、アップロードボタン探索など）向けに、結果を bool ではなく
3状態で返す。呼び出し側は「機能が存在しない」と「操作が失敗した」を区別できる。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from .detector import ElementNotFoundError
from .steplog import log_step

if TYPE_CHECKING:
    from playwright.async_api import Locator

logger = logging.getLogger(__name__)


class ActionOutcome(str, Enum):
    """許容型ワークフローの結果。"""

    ACTED = "acted"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class ActionResult:
    """許容型ワークフローの結果と詳細。

    Attributes:
        outcome: 結果の種別
        description: 操作の説明
        error: NOT_FOUND / FAILED 時のエラーメッセージ
    """

    outcome: ActionOutcome
    description: str
    error: Optional[str] = None

    @property
    def acted(self) -> bool:
        return self.outcome is ActionOutcome.ACTED

    @property
    def tolerated(self) -> bool:
        """テストを失敗扱いにしない結果かどうか（ACTED または NOT_FOUND）。"""
        return self.outcome is not ActionOutcome.FAILED

    def __bool__(self) -> bool:
        return self.acted


async def attempt_action(
    description: str,
    locate: Callable[[], Awaitable[Locator]],
    act: Callable[[Locator], Awaitable[object]],
) -> ActionResult:
    """要素を探して操作し、結果を3状態で返す。

    locate() が ElementNotFoundError を送出した場合は NOT_FOUND、
    act() が例外を送出した場合は FAILED として warning を出力する。
    locate() がそれ以外の例外を送出した場合はそのまま伝播する。

    Args:
        description: 操作の説明
        locate: 対象要素を返す非同期関数
        act: 要素を受け取って操作する非同期関数

    Returns:
        操作結果
    """
    try:
        locator = await locate()
    except ElementNotFoundError as exc:
        log_step(logger, f"{description}: 対象が見つからないためスキップします", "warning")
        return ActionResult(ActionOutcome.NOT_FOUND, description, str(exc))

    try:
        await act(locator)
    except Exception as exc:
        log_step(logger, f"{description}: 操作に失敗しました", "warning", str(exc))
        return ActionResult(ActionOutcome.FAILED, description, str(exc))

    log_step(logger, f"{description}: 完了しました", "success")
    return ActionResult(ActionOutcome.ACTED, description)
