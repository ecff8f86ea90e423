"""
セレクタ記述子 — 要素指定方式のタグ付きモデルと Locator への変換

要素の指定方式を css / text / role / testId の4種類のタグ付きモデルで表現し、
Playwright の Locator へ明示的なディスパッチで変換する。
文字列を評価して Playwright のメソッドを呼び出すような動的実行は行わない。

主な機能:
  - CssSelector / TextSelector / RoleSelector / TestIdSelector: セレクタモデル
  - to_selector(): 文字列・辞書・モデルからセレクタモデルへの変換
  - build_locator(): セレクタモデルから Locator を生成
  - describe_selector(): ログ・エラーメッセージ用の説明文字列
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

if TYPE_CHECKING:
    from playwright.async_api import FrameLocator, Locator, Page


# ---------------------------------------------------------------------------
# セレクタモデル
# ---------------------------------------------------------------------------

class CssSelector(BaseModel):
    """Playwright セレクタ文字列による要素特定。

    CSS のほか `text=...` や `:has-text()` などの Playwright 拡張構文も
    そのまま渡す。構文の検証は行わない。
    text を補助条件として併用し、同一セレクタ内の要素を絞り込める。
    """

    kind: Literal["css"] = "css"
    css: str = Field(..., description="セレクタ文字列")
    text: Optional[str] = Field(default=None, description="テキスト内容による補助条件")


class TextSelector(BaseModel):
    """テキスト内容によるセレクタ。"""

    kind: Literal["text"] = "text"
    text: str = Field(..., description="テキスト内容")
    exact: Optional[bool] = Field(default=None, description="完全一致で検索するか")


class RoleSelector(BaseModel):
    """ARIA ロールによるセレクタ。

    name を併用することで、同一ロールの要素を区別できる。
    """

    kind: Literal["role"] = "role"
    role: str = Field(..., description="ARIA ロール名（button, link, menuitem 等）")
    name: Optional[str] = Field(default=None, description="アクセシブルネーム")
    exact: Optional[bool] = Field(default=None, description="name の完全一致検索")


class TestIdSelector(BaseModel):
    """data-testid 属性によるセレクタ。"""

    __test__ = False

    kind: Literal["testId"] = "testId"
    testId: str = Field(..., description="data-testid 属性の値")


Selector = Annotated[
    Union[CssSelector, TextSelector, RoleSelector, TestIdSelector],
    Field(discriminator="kind"),
]
"""全セレクタ種別のタグ付き Union 型（kind で判別）。"""

SelectorLike = Union[str, dict, CssSelector, TextSelector, RoleSelector, TestIdSelector]
"""to_selector() が受け付ける入力型。"""

_SELECTOR_ADAPTER: TypeAdapter = TypeAdapter(Selector)

# kind 省略時に辞書のキーから種別を推定する（判定順は上から）
_KIND_BY_KEY = (
    ("testId", "testId"),
    ("role", "role"),
    ("css", "css"),
    ("text", "text"),
)


# ---------------------------------------------------------------------------
# 変換
# ---------------------------------------------------------------------------

def to_selector(value: SelectorLike) -> Selector:
    """入力値をセレクタモデルに変換する。

    - 文字列: CssSelector として扱う
    - 辞書: kind があればそれに従い、なければキーから種別を推定する
    - セレクタモデル: そのまま返す

    Args:
        value: 変換元の値

    Returns:
        セレクタモデル

    Raises:
        pydantic.ValidationError: 辞書の内容がどの種別にも一致しない場合
        TypeError: 未対応の型の場合
    """
    if isinstance(value, (CssSelector, TextSelector, RoleSelector, TestIdSelector)):
        return value
    if isinstance(value, str):
        return CssSelector(css=value)
    if isinstance(value, dict):
        data: dict[str, Any] = dict(value)
        if "kind" not in data:
            for key, kind in _KIND_BY_KEY:
                if key in data:
                    data["kind"] = kind
                    break
        return _SELECTOR_ADAPTER.validate_python(data)
    raise TypeError(f"セレクタに変換できない型です: {type(value).__name__}")


def to_selectors(values: list[SelectorLike] | tuple[SelectorLike, ...]) -> list[Selector]:
    """入力値のリストをセレクタモデルのリストに変換する（順序を保持）。"""
    return [to_selector(v) for v in values]


def build_locator(target: Page | FrameLocator | Locator, selector: Selector) -> Locator:
    """セレクタモデルから Playwright Locator を生成する。

    Args:
        target: Page / FrameLocator / Locator のいずれか
        selector: セレクタモデル

    Returns:
        Playwright Locator

    Raises:
        TypeError: 未知のセレクタ種別の場合
    """
    if isinstance(selector, CssSelector):
        if selector.text is not None:
            return target.locator(selector.css, has_text=selector.text)
        return target.locator(selector.css)

    if isinstance(selector, TextSelector):
        if selector.exact is not None:
            return target.get_by_text(selector.text, exact=selector.exact)
        return target.get_by_text(selector.text)

    if isinstance(selector, RoleSelector):
        kwargs: dict = {}
        if selector.name is not None:
            kwargs["name"] = selector.name
        if selector.exact is not None:
            kwargs["exact"] = selector.exact
        return target.get_by_role(selector.role, **kwargs)

    if isinstance(selector, TestIdSelector):
        return target.get_by_test_id(selector.testId)

    raise TypeError(f"未知のセレクタ種別です: {type(selector).__name__}")


def describe_selector(selector: Selector) -> str:
    """セレクタの人間可読な説明文字列を生成する。"""
    if isinstance(selector, CssSelector):
        if selector.text:
            return f"css='{selector.css}', text='{selector.text}'"
        return f"css='{selector.css}'"
    if isinstance(selector, TextSelector):
        return f"text='{selector.text}'"
    if isinstance(selector, RoleSelector):
        if selector.name:
            return f"role='{selector.role}', name='{selector.name}'"
        return f"role='{selector.role}'"
    if isinstance(selector, TestIdSelector):
        return f"testId='{selector.testId}'"
    return f"unknown({type(selector).__name__})"
