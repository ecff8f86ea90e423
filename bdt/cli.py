"""
CLI エントリポイント — Typer ベースのコマンドラインインターフェース

bdt コマンドとして以下のサブコマンドを提供する:
  - init: E2E テスト用ディレクトリと設定テンプレートの生成
  - run: フェーズ単位のスイート実行と合格率判定
  - summarize: 既存の JUnit XML の合格率判定
  - report: metrics.json から HTML レポートを再生成
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Typer アプリ定義
# ---------------------------------------------------------------------------

app = typer.Typer(
    help=(
        "bdt — BiNDup E2E テスト支援ツール\n\n"
        "基本の流れ:\n"
        "  1. bdt init            テスト用ディレクトリと bdt.yaml を生成\n"
        "  2. bdt run             フェーズ単位でスイートを実行（成功率 70% 未満で終了コード 1）\n\n"
        "詳しくは各コマンドに --help を付けてください。"
    ),
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# init コマンド
# ---------------------------------------------------------------------------

@app.command()
def init(
    project_dir: Path = typer.Argument(
        Path("."), help="プロジェクトディレクトリ（デフォルト: カレント）",
    ),
) -> None:
    """E2E テスト用のディレクトリ構造と設定テンプレートを生成する。"""
    from .config import CONFIG_TEMPLATE, DEFAULT_CONFIG_FILE

    try:
        for d in ("tests/e2e", "test-results"):
            (project_dir / d).mkdir(parents=True, exist_ok=True)

        config_path = project_dir / DEFAULT_CONFIG_FILE
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE, encoding="utf-8")

        typer.echo(f"プロジェクトを初期化しました: {project_dir.resolve()}")
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# run コマンド
# ---------------------------------------------------------------------------

@app.command()
def run(
    browser: Optional[list[str]] = typer.Option(
        None, "--browser", "-b", help="対象ブラウザ（複数指定可。デフォルト: 設定ファイルの値）",
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="並列実行ワーカー数"),
    reruns: Optional[int] = typer.Option(None, "--reruns", help="失敗したテストの再実行回数（デフォルト: 2）"),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", "-t", help="合格とする成功率（%、デフォルト: 70）",
    ),
    phase: Optional[list[str]] = typer.Option(
        None, "--phase", "-p",
        help="実行するテストパス（指定時は既定フェーズの代わりに 1 フェーズで実行）",
    ),
    max_failures: int = typer.Option(5, "--max-failures", help="pytest --maxfail に渡す値"),
    clean: bool = typer.Option(True, "--clean/--no-clean", help="前回の結果を削除してから実行する"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="設定ファイル（bdt.yaml）"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="DEBUG ログを出力する"),
) -> None:
    """E2E スイートをフェーズ × ブラウザの順に実行し、成功率で終了コードを決める。"""
    from .config import load_config
    from .core.steplog import setup_logging
    from .runner import (
        DEFAULT_PHASES,
        Phase,
        RunnerSettings,
        SuiteRunner,
        clean_results,
        exit_code,
        format_summary,
        summarize_phases,
        write_ci_outputs,
    )

    setup_logging(verbose)

    try:
        config = load_config(
            config_file,
            overrides={
                "browsers": browser or None,
                "workers": workers,
                "reruns": reruns,
                "pass_threshold": threshold,
            },
        )

        results_dir = Path(config.results_dir)
        if clean:
            clean_results([results_dir])

        settings = RunnerSettings(
            browsers=list(config.browsers),
            workers=config.workers,
            retries=config.reruns,
            max_failures=max_failures,
            results_dir=results_dir,
        )
        phases = (Phase("Custom", tuple(phase), 180.0),) if phase else DEFAULT_PHASES

        results = SuiteRunner(settings).run(phases)
        summary = summarize_phases(results)
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)

    for r in results:
        status = "PASSED" if r.success else "FAILED"
        typer.echo(f"{r.phase} - {r.browser.upper()}: {status} ({r.duration_s:.0f}s)")
    typer.echo(format_summary(summary))
    write_ci_outputs(summary)

    code = exit_code(summary, config.pass_threshold)
    if code != 0:
        raise typer.Exit(code=code)


# ---------------------------------------------------------------------------
# summarize コマンド
# ---------------------------------------------------------------------------

@app.command()
def summarize(
    junit_xml: Path = typer.Argument(..., help="JUnit XML ファイル"),
    threshold: float = typer.Option(70.0, "--threshold", "-t", help="合格とする成功率（%）"),
) -> None:
    """既存の JUnit XML を集計し、成功率で終了コードを決める。"""
    from .runner import exit_code, format_summary, parse_junit_xml

    if not junit_xml.exists():
        typer.echo(f"エラー: {junit_xml} が見つかりません", err=True)
        raise typer.Exit(code=1)

    try:
        summary = parse_junit_xml(junit_xml)
    except ValueError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(format_summary(summary))
    code = exit_code(summary, threshold)
    if code != 0:
        raise typer.Exit(code=code)


# ---------------------------------------------------------------------------
# report コマンド
# ---------------------------------------------------------------------------

@app.command()
def report(
    metrics_json: Path = typer.Argument(..., help="metrics.json のパス"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="出力先ディレクトリ（デフォルト: metrics.json と同じ場所）",
    ),
) -> None:
    """既存の metrics.json から HTML レポートを再生成する。"""
    from .core.reporting import Reporter, load_json

    if not metrics_json.exists():
        typer.echo(f"エラー: {metrics_json} が見つかりません", err=True)
        raise typer.Exit(code=1)

    try:
        report_data = load_json(metrics_json)
        reporter = Reporter(title=report_data.get("title", "bdt メトリクスレポート"))
        html_path = reporter.render_html(report_data, output or metrics_json.parent)
        typer.echo(f"HTML レポートを生成しました: {html_path}")
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)

