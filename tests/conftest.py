"""
テスト共通フィクスチャ・ヘルパー

Playwright の Page / Locator は unittest.mock で代用する。実際のブラウザは起動しない。
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from bdt.core.metrics import MetricsCollector

pytest_plugins = ["pytester"]


# ---------------------------------------------------------------------------
# 時計
# ---------------------------------------------------------------------------

class FakeClock:
    """呼び出し側が進める時計（ミリ秒）。"""

    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


# ---------------------------------------------------------------------------
# ログ捕捉
# ---------------------------------------------------------------------------

class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@contextmanager
def capture_logs(name: str = "bdt") -> Iterator[list[logging.LogRecord]]:
    """指定ロガー配下のログレコードをリストに集める。

    caplog と異なり関数スコープのフィクスチャに依存しないため、
    Hypothesis のプロパティテストでも使用できる。
    """
    target = logging.getLogger(name)
    handler = _ListHandler()
    previous = target.level
    target.addHandler(handler)
    target.setLevel(logging.DEBUG)
    try:
        yield handler.records
    finally:
        target.removeHandler(handler)
        target.setLevel(previous)


def records_at(records: Iterable[logging.LogRecord], logger: str, level: int) -> list[logging.LogRecord]:
    return [r for r in records if r.name == logger and r.levelno == level]


# ---------------------------------------------------------------------------
# Playwright モック
# ---------------------------------------------------------------------------

def make_mock_page(visible: Iterable[str] = ()) -> MagicMock:
    """CSS セレクタ単位で可視状態を制御できるモック Page を生成する。

    page.locator(css) は呼び出しごとに新しいモック Locator を返す。
    visible に含まれるセレクタの Locator は wait_for() が成功し、
    それ以外は Playwright と同様の TimeoutError を送出する。

    Args:
        visible: 可視として扱う CSS セレクタ
    """
    visible_set = set(visible)
    page = MagicMock()
    page.url = "https://edit3.bindcloud.jp/bindcld/siteTheater/"

    def _locator(css: str, **kwargs) -> MagicMock:
        return make_mock_locator(css, visible=css in visible_set)

    page.locator = MagicMock(side_effect=_locator)
    page.wait_for_timeout = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.goto = AsyncMock()
    page.evaluate = AsyncMock(return_value=[])
    page.keyboard = MagicMock()
    page.keyboard.press = AsyncMock()
    return page


def make_mock_locator(selector: str = "", *, visible: bool = False, count: int | None = None) -> MagicMock:
    """モック Locator を生成する。first は自分自身を返す。"""
    locator = MagicMock()
    locator.selector = selector
    locator.first = locator
    if visible:
        locator.wait_for = AsyncMock()
    else:
        locator.wait_for = AsyncMock(
            side_effect=TimeoutError(f"Timeout 3000ms exceeded.\nwaiting for locator('{selector}')"),
        )
    locator.is_visible = AsyncMock(return_value=visible)
    locator.count = AsyncMock(return_value=(1 if visible else 0) if count is None else count)
    locator.click = AsyncMock()
    locator.hover = AsyncMock()
    locator.fill = AsyncMock()
    locator.evaluate = AsyncMock()
    return locator


# ---------------------------------------------------------------------------
# pytest フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics(clock: FakeClock) -> MetricsCollector:
    """FakeClock を使う MetricsCollector。"""
    return MetricsCollector(clock=clock)
