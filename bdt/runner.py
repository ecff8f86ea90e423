"""
SuiteRunner — フェーズ単位の E2E スイート実行と合格率判定

E2E テストをフェーズ（クイック検証 → コア機能 → 拡張 → 全体）× ブラウザの順に
pytest サブプロセスで実行し、結果を集計して合格率で終了コードを決める。

主な機能:
  - Phase / RunnerSettings: フェーズ定義と実行設定
  - build_pytest_command(): フェーズ・ブラウザごとの pytest コマンド生成
  - SuiteRunner.run(): 逐次実行（失敗率が高い場合は早期終了）
  - parse_junit_xml() / summarize_phases(): 結果の集計
  - grade() / exit_code(): 合格率の評価（デフォルトしきい値 70%）
  - clean_results(): 前回の結果ディレクトリの削除
  - write_ci_outputs(): GitHub Actions への出力
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal, Mapping, Optional, Sequence

from .core.steplog import log_phase, log_step

logger = logging.getLogger(__name__)

DEFAULT_PASS_THRESHOLD = 70.0

# 早期終了の判定条件
EARLY_STOP_MIN_RESULTS = 4
EARLY_STOP_FAILURE_RATIO = 0.75

# サブプロセス全体のタイムアウトはフェーズのタイムアウトにこの秒数を加える
COMMAND_TIMEOUT_BUFFER_S = 60.0

Grade = Literal["excellent", "good", "moderate", "needs_attention"]

# (コマンド, タイムアウト秒) を受け取り終了コードを返す
CommandExecutor = Callable[[Sequence[str], float], int]


# ---------------------------------------------------------------------------
# 設定・結果データクラス
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Phase:
    """実行フェーズ。

    Attributes:
        name: フェーズ名
        paths: pytest に渡すテストファイル・ディレクトリ
        timeout_s: テスト1件あたりのタイムアウト（秒、pytest-timeout の --timeout）
        keyword: pytest -k に渡す絞り込み式
        marker: pytest -m に渡すマーカー式
        description: 説明
    """

    name: str
    paths: tuple[str, ...]
    timeout_s: float
    keyword: Optional[str] = None
    marker: Optional[str] = None
    description: str = ""


DEFAULT_PHASES: tuple[Phase, ...] = (
    Phase(
        "Quick Validation",
        ("tests/e2e/test_site_creation.py",),
        60,
        keyword="sct_02 or sct_03",
        description="主要機能の簡易確認",
    ),
    Phase(
        "Core Functionality",
        ("tests/e2e/test_cross_browser.py", "tests/e2e/test_site_theater.py"),
        90,
        description="BiNDup の基本操作",
    ),
    Phase(
        "Extended Testing",
        ("tests/e2e/test_image_crud.py", "tests/e2e/test_site_performance.py"),
        120,
        description="画像操作・パフォーマンス",
    ),
    Phase("Full Suite", ("tests/e2e",), 180, description="全テスト"),
)


@dataclass
class RunnerSettings:
    """SuiteRunner の実行設定。

    Attributes:
        browsers: 対象ブラウザ（pytest-playwright の --browser に渡す）
        workers: 並列ワーカー数（2 以上で pytest-xdist の -n を付与）
        retries: 失敗したテストの再実行回数（pytest-rerunfailures の --reruns）
        max_failures: pytest --maxfail に渡す値
        results_dir: JUnit XML の出力先
        python: pytest を起動する Python 実行ファイル
    """

    browsers: list[str] = field(default_factory=lambda: ["chromium", "webkit"])
    workers: int = 1
    retries: int = 2
    max_failures: int = 5
    results_dir: Path = field(default_factory=lambda: Path("test-results"))
    python: str = sys.executable


@dataclass
class PhaseResult:
    """フェーズ × ブラウザ 1 回分の実行結果。"""

    phase: str
    browser: str
    returncode: int
    duration_s: float
    junit_path: Optional[Path] = None
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


@dataclass
class RunSummary:
    """集計結果。

    Attributes:
        total: 判定対象の件数（スキップを除く）
        passed: 成功件数
        failed: 失敗件数（エラーを含む）
        skipped: スキップ件数
        duration_s: 合計所要時間（秒）
    """

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_s: float = 0.0

    @property
    def pass_rate(self) -> float:
        """成功率（%）。判定対象がなければ 0.0。"""
        return self.passed / self.total * 100.0 if self.total else 0.0


# ---------------------------------------------------------------------------
# コマンド生成・実行
# ---------------------------------------------------------------------------

def build_pytest_command(
    phase: Phase,
    browser: str,
    settings: RunnerSettings,
    junit_path: Path,
) -> list[str]:
    """フェーズ・ブラウザに対応する pytest コマンドを組み立てる。

    使用する pytest プラグインのオプション:
      --browser: pytest-playwright
      --timeout: pytest-timeout
      --reruns: pytest-rerunfailures
      -n: pytest-xdist
    """
    cmd = [
        settings.python, "-m", "pytest",
        *phase.paths,
        "--browser", browser,
        "--maxfail", str(settings.max_failures),
        "--timeout", f"{phase.timeout_s:g}",
        "--junitxml", str(junit_path),
    ]
    if settings.retries > 0:
        cmd.extend(["--reruns", str(settings.retries)])
    if settings.workers > 1:
        cmd.extend(["-n", str(settings.workers)])
    if phase.keyword:
        cmd.extend(["-k", phase.keyword])
    if phase.marker:
        cmd.extend(["-m", phase.marker])
    return cmd


def _subprocess_executor(cmd: Sequence[str], timeout_s: float) -> int:
    return subprocess.run(list(cmd), timeout=timeout_s).returncode


class SuiteRunner:
    """フェーズ × ブラウザを逐次実行するランナー。

    Args:
        settings: 実行設定
        executor: コマンド実行関数（テストでは差し替える）
        clock: 所要時間計測用の時計
    """

    def __init__(
        self,
        settings: Optional[RunnerSettings] = None,
        executor: CommandExecutor = _subprocess_executor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or RunnerSettings()
        self._executor = executor
        self._clock = clock

    @property
    def settings(self) -> RunnerSettings:
        return self._settings

    def run_phase(self, phase: Phase, browser: str) -> PhaseResult:
        """1 フェーズを 1 ブラウザで実行する。"""
        log_phase(logger, f"{phase.name} - {browser.upper()}", phase.description)
        junit_path = self._settings.results_dir / f"{_slug(phase.name)}-{browser}.xml"
        cmd = build_pytest_command(phase, browser, self._settings, junit_path)
        logger.debug("実行コマンド: %s", " ".join(cmd))

        started = self._clock()
        timed_out = False
        try:
            returncode = self._executor(cmd, phase.timeout_s + COMMAND_TIMEOUT_BUFFER_S)
        except subprocess.TimeoutExpired:
            timed_out = True
            returncode = -1
        duration = self._clock() - started

        result = PhaseResult(phase.name, browser, returncode, duration, junit_path, timed_out)
        if result.success:
            log_step(logger, f"{phase.name} ({browser})", "success", f"{duration:.0f}s")
        elif timed_out:
            deadline = phase.timeout_s + COMMAND_TIMEOUT_BUFFER_S
            log_step(logger, f"{phase.name} ({browser})", "error", f"タイムアウト ({deadline:.0f}s)")
        else:
            log_step(logger, f"{phase.name} ({browser})", "error", f"終了コード {returncode}")
        return result

    def run(self, phases: Sequence[Phase] = DEFAULT_PHASES) -> list[PhaseResult]:
        """全フェーズを実行する。

        各フェーズを全ブラウザで実行し、結果が 4 件以上かつ失敗率が 75% を
        超えた時点で残りを実行せずに終了する。
        """
        self._settings.results_dir.mkdir(parents=True, exist_ok=True)
        results: list[PhaseResult] = []

        for phase in phases:
            for browser in self._settings.browsers:
                results.append(self.run_phase(phase, browser))
                if should_stop_early(results):
                    log_step(logger, "失敗率が高いため実行を中断します", "warning")
                    return results
        return results


def should_stop_early(results: Sequence[PhaseResult]) -> bool:
    if len(results) < EARLY_STOP_MIN_RESULTS:
        return False
    failures = sum(1 for r in results if not r.success)
    return failures / len(results) > EARLY_STOP_FAILURE_RATIO


def _slug(name: str) -> str:
    return "-".join(name.lower().split())


# ---------------------------------------------------------------------------
# 集計
# ---------------------------------------------------------------------------

def summarize_phases(results: Sequence[PhaseResult]) -> RunSummary:
    """フェーズ実行結果を 1 件ずつ数えて集計する。"""
    passed = sum(1 for r in results if r.success)
    return RunSummary(
        total=len(results),
        passed=passed,
        failed=len(results) - passed,
        duration_s=sum(r.duration_s for r in results),
    )


def parse_junit_xml(path: Path) -> RunSummary:
    """JUnit XML を読み込み、テストケース単位で集計する。

    ルートが <testsuites> でも <testsuite> でも受け付ける。

    Raises:
        FileNotFoundError: ファイルが存在しない場合
        ValueError: XML として解析できない場合
    """
    try:
        root = ET.parse(str(path)).getroot()
    except ET.ParseError as exc:
        raise ValueError(f"JUnit XML を解析できません: {path}: {exc}") from exc

    suites = [root] if root.tag == "testsuite" else root.findall("testsuite")

    tests = failed = skipped = 0
    duration = 0.0
    for suite in suites:
        tests += int(suite.get("tests", 0))
        failed += int(suite.get("failures", 0)) + int(suite.get("errors", 0))
        skipped += int(suite.get("skipped", 0))
        duration += float(suite.get("time", 0.0))

    total = tests - skipped
    return RunSummary(
        total=total,
        passed=total - failed,
        failed=failed,
        skipped=skipped,
        duration_s=duration,
    )


def grade(pass_rate: float) -> Grade:
    if pass_rate >= 90:
        return "excellent"
    if pass_rate >= 80:
        return "good"
    if pass_rate >= 70:
        return "moderate"
    return "needs_attention"


_GRADE_MESSAGES: dict[str, str] = {
    "excellent": "EXCELLENT: 成功率が 90% を超えています",
    "good": "GOOD: 成功率が 80% を超えています",
    "moderate": "MODERATE: 成功率に改善の余地があります",
    "needs_attention": "NEEDS ATTENTION: 成功率が 70% を下回っています",
}


def exit_code(summary: RunSummary, threshold: float = DEFAULT_PASS_THRESHOLD) -> int:
    """成功率がしきい値以上なら 0、未満なら 1 を返す。"""
    return 0 if summary.pass_rate >= threshold else 1


def format_summary(summary: RunSummary) -> str:
    """集計結果をコンソール表示用のテキストに変換する。"""
    return "\n".join([
        f"成功率: {summary.pass_rate:.0f}% ({summary.passed}/{summary.total})",
        f"失敗: {summary.failed}  スキップ: {summary.skipped}",
        f"合計所要時間: {summary.duration_s:.0f}s",
        _GRADE_MESSAGES[grade(summary.pass_rate)],
    ])


# ---------------------------------------------------------------------------
# 前処理・CI 連携
# ---------------------------------------------------------------------------

def clean_results(paths: Sequence[Path]) -> list[Path]:
    """前回の結果ディレクトリを削除する。

    Returns:
        実際に削除したパス
    """
    removed: list[Path] = []
    for path in paths:
        if path.is_dir():
            shutil.rmtree(path)
            removed.append(path)
            logger.info("前回の結果を削除しました: %s", path)
    return removed


def write_ci_outputs(
    summary: RunSummary,
    environ: Optional[Mapping[str, str]] = None,
) -> bool:
    """CI 環境であれば GITHUB_OUTPUT に集計値を追記する。

    Returns:
        書き込んだ場合 True
    """
    env = os.environ if environ is None else environ
    output = env.get("GITHUB_OUTPUT")
    if not env.get("CI") or not output:
        return False

    with open(output, "a", encoding="utf-8") as f:
        f.write(f"pass_rate={summary.pass_rate:.0f}\n")
        f.write(f"total_tests={summary.total}\n")
        f.write(f"passed_tests={summary.passed}\n")
        f.write(f"duration={summary.duration_s:.0f}\n")
    logger.info("GitHub Actions に結果を出力しました: %s", output)
    return True
