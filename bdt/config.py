"""
bdt 設定 — YAML ファイル・環境変数・CLI 引数からの設定読み込み

CLI 引数 > 環境変数 > YAML ファイル（bdt.yaml） > デフォルト値 の優先順位で適用される。

環境変数一覧:
  BDT_CANDIDATE_TIMEOUT_MS : 候補セレクタごとの待機時間（デフォルト: 3000）
  BDT_SETTLE_MS            : 強制クリック後の待機時間（デフォルト: 1000）
  BDT_MAX_RETRIES          : リトライ回数（デフォルト: 3）
  BDT_BASE_DELAY_MS        : リトライの基本待機時間（デフォルト: 2000）
  BDT_SLOW_THRESHOLD_MS    : 低速操作とみなす所要時間（デフォルト: 30000）
  BDT_SLOW_TOP_N           : レポートに載せる低速操作の数（デフォルト: 3）
  BDT_PASS_THRESHOLD       : 合格とする成功率（%、デフォルト: 70.0）
  BDT_BROWSERS             : 対象ブラウザ（カンマ区切り、デフォルト: chromium,webkit）
  BDT_WORKERS              : 並列ワーカー数（デフォルト: 1）
  BDT_RERUNS               : 失敗したテストの再実行回数（デフォルト: 2）
  BDT_RESULTS_DIR          : 結果出力ディレクトリ（デフォルト: test-results）
  BDT_LOGIN_URL            : ログインページの URL
  BDT_SITE_THEATER_URL     : Site Theater の URL

認証情報は TEST_USERNAME / TEST_PASSWORD から読み込む。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "bdt.yaml"

_ENV_PREFIX = "BDT_"
_ENV_USERNAME = "TEST_USERNAME"
_ENV_PASSWORD = "TEST_PASSWORD"


class ConfigError(Exception):
    """設定ファイルまたは設定値が不正な場合に送出される例外。"""


# ---------------------------------------------------------------------------
# 設定データクラス
# ---------------------------------------------------------------------------

@dataclass
class BdtConfig:
    """bdt の実行時設定。

    Attributes:
        candidate_timeout_ms: 候補セレクタごとの可視待機時間（ミリ秒）
        settle_ms: 強制クリック後の待機時間（ミリ秒）
        max_retries: リトライ実行の最大試行回数
        base_delay_ms: 指数バックオフの基本待機時間（ミリ秒）
        slow_threshold_ms: 低速操作とみなす所要時間（ミリ秒）
        slow_top_n: レポートに載せる低速操作の数
        pass_threshold: 合格とする成功率（%）
        browsers: 対象ブラウザ
        workers: 並列ワーカー数
        reruns: 失敗したテストの再実行回数（bdt run）
        results_dir: 結果出力ディレクトリ
        login_url: ログインページの URL
        site_theater_url: Site Theater の URL
    """

    candidate_timeout_ms: int = 3000
    settle_ms: int = 1000
    max_retries: int = 3
    base_delay_ms: int = 2000
    slow_threshold_ms: float = 30_000.0
    slow_top_n: int = 3
    pass_threshold: float = 70.0
    browsers: list[str] = field(default_factory=lambda: ["chromium", "webkit"])
    workers: int = 1
    reruns: int = 2
    results_dir: str = "test-results"
    login_url: str = "https://mypage.weblife.me/auth/"
    site_theater_url: str = "https://edit3.bindcloud.jp/bindcld/siteTheater/"

    def validate(self) -> None:
        """値の範囲を検証する。

        Raises:
            ConfigError: 範囲外の値がある場合
        """
        if self.max_retries < 1:
            raise ConfigError(f"max_retries は 1 以上が必要です: {self.max_retries}")
        if self.workers < 1:
            raise ConfigError(f"workers は 1 以上が必要です: {self.workers}")
        if not 0.0 <= self.pass_threshold <= 100.0:
            raise ConfigError(f"pass_threshold は 0〜100 の範囲で指定してください: {self.pass_threshold}")
        for name in ("candidate_timeout_ms", "settle_ms", "base_delay_ms", "slow_threshold_ms", "slow_top_n", "reruns"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} に負の値は指定できません: {getattr(self, name)}")
        if not self.browsers:
            raise ConfigError("browsers が空です")
        results = Path(self.results_dir).resolve()
        cwd = Path.cwd().resolve()
        if results == cwd or results in cwd.parents:
            raise ConfigError(
                f"results_dir にカレントディレクトリまたはその親は指定できません: {self.results_dir}"
            )


@dataclass(frozen=True)
class Credentials:
    """テスト用アカウントの認証情報。"""

    username: str
    password: str

    @classmethod
    def from_env(cls) -> Credentials:
        """TEST_USERNAME / TEST_PASSWORD から認証情報を読み込む。

        Raises:
            ConfigError: どちらかが未設定の場合
        """
        username = os.environ.get(_ENV_USERNAME, "")
        password = os.environ.get(_ENV_PASSWORD, "")
        missing = [
            name for name, value in ((_ENV_USERNAME, username), (_ENV_PASSWORD, password))
            if not value
        ]
        if missing:
            raise ConfigError(f"環境変数が設定されていません: {', '.join(missing)}")
        logger.info("認証情報を読み込みました: user=%s, password=%s", username, mask_secret(password))
        return cls(username=username, password=password)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password={mask_secret(self.password)!r})"


def mask_secret(value: Optional[str]) -> str:
    """秘密値を *** に置き換える。空値は空文字列のまま返す。"""
    return "***" if value else ""


# ---------------------------------------------------------------------------
# 値の変換
# ---------------------------------------------------------------------------

def _parse_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


def _coerce(config: BdtConfig, name: str, value: Any, source: str) -> None:
    """型に合わせて値を変換し、設定に反映する。"""
    current = getattr(config, name)
    try:
        if isinstance(current, list):
            converted: Any = _parse_list(value)
        elif isinstance(current, int):
            converted = int(value)
        elif isinstance(current, float):
            converted = float(value)
        else:
            converted = str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{source} の {name} の値が不正です: {value!r}") from exc
    setattr(config, name, converted)


# ---------------------------------------------------------------------------
# 読み込み
# ---------------------------------------------------------------------------

def load_yaml_file(path: Path) -> dict[str, Any]:
    """YAML 設定ファイルを辞書として読み込む。

    Raises:
        ConfigError: 構文エラー、またはトップレベルがマッピングでない場合
    """
    yaml = YAML(typ="safe")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.load(f)
    except YAMLError as exc:
        raise ConfigError(f"設定ファイルの構文エラー: {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"設定ファイルのトップレベルはマッピングである必要があります: {path}")
    return data


def apply_mapping(config: BdtConfig, data: dict[str, Any], source: str) -> BdtConfig:
    """辞書の値を設定に適用する。未知のキーは warning を出して無視する。"""
    known = {f.name for f in fields(config)}
    for key, value in data.items():
        if key not in known:
            logger.warning("%s: 未知の設定キーを無視します: %s", source, key)
            continue
        if value is None:
            continue
        _coerce(config, key, value, source)
    return config


def apply_env(config: BdtConfig, environ: Optional[dict[str, str]] = None) -> BdtConfig:
    """BDT_* 環境変数を設定に適用する。"""
    env = os.environ if environ is None else environ
    for f in fields(config):
        key = _ENV_PREFIX + f.name.upper()
        if key in env:
            _coerce(config, f.name, env[key], key)
    return config


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[dict[str, Any]] = None,
    environ: Optional[dict[str, str]] = None,
) -> BdtConfig:
    """設定を読み込む。

    Args:
        path: 設定ファイルのパス。省略時はカレントディレクトリの bdt.yaml（存在する場合のみ）
        overrides: CLI 引数による上書き（None の値は無視）
        environ: 環境変数（テスト用。省略時は os.environ）

    Returns:
        検証済みの設定

    Raises:
        ConfigError: 明示したファイルが存在しない、または値が不正な場合
    """
    config = BdtConfig()

    if path is not None:
        if not path.exists():
            raise ConfigError(f"設定ファイルが見つかりません: {path}")
        apply_mapping(config, load_yaml_file(path), str(path))
    elif Path(DEFAULT_CONFIG_FILE).exists():
        apply_mapping(config, load_yaml_file(Path(DEFAULT_CONFIG_FILE)), DEFAULT_CONFIG_FILE)

    apply_env(config, environ)

    if overrides:
        apply_mapping(config, overrides, "CLI")

    config.validate()
    logger.debug("設定を読み込みました: %s", config)
    return config


# ---------------------------------------------------------------------------
# テンプレート
# ---------------------------------------------------------------------------

CONFIG_TEMPLATE = """\
# bdt 設定ファイル
# 優先順位: CLI 引数 > 環境変数 (BDT_*) > このファイル > デフォルト値
# 認証情報は環境変数 TEST_USERNAME / TEST_PASSWORD で指定する

# 要素検出: 候補セレクタごとの待機時間（ミリ秒）
candidate_timeout_ms: 3000
# 強制クリック後の待機時間（ミリ秒）
settle_ms: 1000

# リトライ: 最大試行回数と基本待機時間（ミリ秒）
max_retries: 3
base_delay_ms: 2000

# メトリクス: 低速操作のしきい値（ミリ秒）と表示件数
slow_threshold_ms: 30000
slow_top_n: 3

# 合格とする成功率（%）
pass_threshold: 70.0

browsers:
  - chromium
  - webkit
workers: 1
# 失敗したテストの再実行回数（bdt run）
reruns: 2
results_dir: test-results

login_url: https://mypage.weblife.me/auth/
site_theater_url: https://edit3.bindcloud.jp/bindcld/siteTheater/
"""
