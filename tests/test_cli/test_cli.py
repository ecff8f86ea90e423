"""
CLI テスト — typer.testing.CliRunner を使用した CLI コマンドのテスト

pytest サブプロセスやブラウザは起動せず、SuiteRunner をモックで代替する。
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from bdt.cli import app
from bdt.core.metrics import MetricsCollector, MetricStatus
from bdt.core.reporting import Reporter
from bdt.runner import PhaseResult
from conftest import FakeClock

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """カレントディレクトリと CI 関連の環境変数を隔離する。"""
    monkeypatch.chdir(tmp_path)
    for key in ("CI", "GITHUB_OUTPUT", "BDT_BROWSERS", "BDT_WORKERS", "BDT_RERUNS", "BDT_PASS_THRESHOLD", "BDT_RESULTS_DIR"):
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# ヘルパー: サンプル JUnit XML
# ---------------------------------------------------------------------------

def _write_junit(path: Path, tests: int, failures: int, skipped: int = 0) -> Path:
    path.write_text(
        f'<testsuites><testsuite name="e2e" tests="{tests}" failures="{failures}" '
        f'errors="0" skipped="{skipped}" time="10"/></testsuites>',
        encoding="utf-8",
    )
    return path


# ===========================================================================
# 1. init コマンド
# ===========================================================================

class TestInitCommand:
    """init コマンドのテスト。"""

    def test_init_creates_directories(self, tmp_path: Path) -> None:
        """ディレクトリ構造（tests/e2e/, test-results/）が生成される。"""
        result = runner.invoke(app, ["init", str(tmp_path / "proj")])
        assert result.exit_code == 0
        assert (tmp_path / "proj" / "tests" / "e2e").is_dir()
        assert (tmp_path / "proj" / "test-results").is_dir()
        assert "プロジェクトを初期化しました" in result.output

    def test_init_creates_config_template(self, tmp_path: Path) -> None:
        """設定ファイルテンプレート（bdt.yaml）が生成される。"""
        result = runner.invoke(app, ["init", str(tmp_path)])
        assert result.exit_code == 0
        content = (tmp_path / "bdt.yaml").read_text(encoding="utf-8")
        assert "pass_threshold: 70.0" in content
        assert "TEST_USERNAME" in content

    def test_init_does_not_overwrite_existing_config(self, tmp_path: Path) -> None:
        """既存の bdt.yaml を上書きしない。"""
        config_path = tmp_path / "bdt.yaml"
        config_path.write_text("workers: 2\n", encoding="utf-8")

        result = runner.invoke(app, ["init", str(tmp_path)])
        assert result.exit_code == 0
        assert config_path.read_text(encoding="utf-8") == "workers: 2\n"

    def test_init_default_current_dir(self, tmp_path: Path) -> None:
        """引数なしでカレントディレクトリに初期化する。"""
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert (tmp_path / "bdt.yaml").exists()


# ===========================================================================
# 2. run コマンド
# ===========================================================================

class TestRunCommand:
    """run コマンドのテスト（SuiteRunner はモック）。"""

    def test_all_passed(self) -> None:
        results = [
            PhaseResult("Quick Validation", "chromium", 0, 12.0),
            PhaseResult("Quick Validation", "webkit", 0, 15.0),
        ]
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = results
            result = runner.invoke(app, ["run"])

        assert result.exit_code == 0
        assert "Quick Validation - CHROMIUM: PASSED (12s)" in result.output
        assert "成功率: 100% (2/2)" in result.output

    def test_below_threshold_exits_1(self) -> None:
        results = [
            PhaseResult("Quick Validation", "chromium", 0, 1.0),
            PhaseResult("Quick Validation", "webkit", 1, 1.0),
        ]
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = results
            result = runner.invoke(app, ["run"])

        assert result.exit_code == 1
        assert "Quick Validation - WEBKIT: FAILED" in result.output
        assert "NEEDS ATTENTION" in result.output

    def test_threshold_option(self) -> None:
        results = [
            PhaseResult("Quick Validation", "chromium", 0, 1.0),
            PhaseResult("Quick Validation", "webkit", 1, 1.0),
        ]
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = results
            result = runner.invoke(app, ["run", "--threshold", "50"])

        assert result.exit_code == 0

    def test_options_forwarded_to_settings(self) -> None:
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = [PhaseResult("Custom", "firefox", 0, 1.0)]
            result = runner.invoke(app, [
                "run", "-b", "firefox", "-w", "3", "--max-failures", "1",
                "-p", "tests/e2e/test_image_crud.py",
            ])

        assert result.exit_code == 0
        settings = mock_runner.call_args.args[0]
        assert settings.browsers == ["firefox"]
        assert settings.workers == 3
        assert settings.max_failures == 1
        [phase] = mock_runner.return_value.run.call_args.args[0]
        assert phase.name == "Custom"
        assert phase.paths == ("tests/e2e/test_image_crud.py",)

    def test_reruns_forwarded_to_settings(self) -> None:
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = [PhaseResult("Full Suite", "chromium", 0, 1.0)]
            result = runner.invoke(app, ["run", "--reruns", "0"])

        assert result.exit_code == 0
        assert mock_runner.call_args.args[0].retries == 0

    def test_default_reruns(self) -> None:
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = [PhaseResult("Full Suite", "chromium", 0, 1.0)]
            runner.invoke(app, ["run"])

        assert mock_runner.call_args.args[0].retries == 2

    def test_results_dir_at_cwd_is_not_cleaned(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """結果ディレクトリがカレントを指す場合は何も削除せずに終了すること。"""
        keep = tmp_path / "tests" / "e2e" / "test_site_creation.py"
        keep.parent.mkdir(parents=True)
        keep.write_text("", encoding="utf-8")
        monkeypatch.setenv("BDT_RESULTS_DIR", ".")

        with patch("bdt.runner.SuiteRunner") as mock_runner:
            result = runner.invoke(app, ["run"])

        assert result.exit_code == 1
        assert "results_dir" in result.output
        assert keep.exists()
        mock_runner.assert_not_called()

    def test_config_file_browsers(self, tmp_path: Path) -> None:
        (tmp_path / "bdt.yaml").write_text("browsers: [webkit]\n", encoding="utf-8")
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = [PhaseResult("Full Suite", "webkit", 0, 1.0)]
            result = runner.invoke(app, ["run"])

        assert result.exit_code == 0
        assert mock_runner.call_args.args[0].browsers == ["webkit"]

    def test_clean_removes_previous_results(self, tmp_path: Path) -> None:
        old = tmp_path / "test-results" / "old.xml"
        old.parent.mkdir()
        old.write_text("<x/>", encoding="utf-8")
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = [PhaseResult("Full Suite", "chromium", 0, 1.0)]
            runner.invoke(app, ["run"])

        assert not old.exists()

    def test_no_clean_keeps_previous_results(self, tmp_path: Path) -> None:
        old = tmp_path / "test-results" / "old.xml"
        old.parent.mkdir()
        old.write_text("<x/>", encoding="utf-8")
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = [PhaseResult("Full Suite", "chromium", 0, 1.0)]
            runner.invoke(app, ["run", "--no-clean"])

        assert old.exists()

    def test_invalid_config(self) -> None:
        result = runner.invoke(app, ["run", "--workers", "0"])
        assert result.exit_code == 1
        assert "workers" in result.output

    def test_missing_config_file(self) -> None:
        result = runner.invoke(app, ["run", "--config", "nope.yaml"])
        assert result.exit_code == 1
        assert "設定ファイルが見つかりません" in result.output

    def test_ci_outputs_written(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        output = tmp_path / "github_output"
        monkeypatch.setenv("CI", "true")
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))
        with patch("bdt.runner.SuiteRunner") as mock_runner:
            mock_runner.return_value.run.return_value = [PhaseResult("Full Suite", "chromium", 0, 1.0)]
            runner.invoke(app, ["run"])

        assert "pass_rate=100" in output.read_text(encoding="utf-8")


# ===========================================================================
# 3. summarize コマンド
# ===========================================================================

class TestSummarizeCommand:

    def test_pass(self, tmp_path: Path) -> None:
        path = _write_junit(tmp_path / "results.xml", tests=10, failures=2)

        result = runner.invoke(app, ["summarize", str(path)])

        assert result.exit_code == 0
        assert "成功率: 80% (8/10)" in result.output
        assert "GOOD" in result.output

    def test_fail(self, tmp_path: Path) -> None:
        path = _write_junit(tmp_path / "results.xml", tests=10, failures=4)

        result = runner.invoke(app, ["summarize", str(path)])

        assert result.exit_code == 1

    def test_skipped_excluded(self, tmp_path: Path) -> None:
        path = _write_junit(tmp_path / "results.xml", tests=10, failures=2, skipped=4)

        result = runner.invoke(app, ["summarize", str(path), "--threshold", "60"])

        assert result.exit_code == 0
        assert "(4/6)" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["summarize", str(tmp_path / "none.xml")])
        assert result.exit_code == 1
        assert "見つかりません" in result.output

    def test_malformed_file(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.xml"
        path.write_text("<testsuites", encoding="utf-8")

        result = runner.invoke(app, ["summarize", str(path)])

        assert result.exit_code == 1
        assert "解析できません" in result.output


# ===========================================================================
# 4. report コマンド
# ===========================================================================

class TestReportCommand:

    @staticmethod
    def _write_metrics_json(directory: Path) -> Path:
        clock = FakeClock()
        collector = MetricsCollector(clock=clock)
        metric_id = collector.start("ログイン", "chromium")
        clock.advance(1500)
        collector.end(metric_id, MetricStatus.SUCCESS)
        return Reporter(title="夜間テスト").generate_json(collector.report(), collector.metrics, directory)

    def test_regenerates_html(self, tmp_path: Path) -> None:
        json_path = self._write_metrics_json(tmp_path / "results")

        result = runner.invoke(app, ["report", str(json_path)])

        assert result.exit_code == 0
        html = (tmp_path / "results" / "metrics.html").read_text(encoding="utf-8")
        assert "夜間テスト" in html
        assert "ログイン" in html

    def test_output_option(self, tmp_path: Path) -> None:
        json_path = self._write_metrics_json(tmp_path / "results")

        result = runner.invoke(app, ["report", str(json_path), "-o", str(tmp_path / "html")])

        assert result.exit_code == 0
        assert (tmp_path / "html" / "metrics.html").exists()

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["report", str(tmp_path / "metrics.json")])
        assert result.exit_code == 1
