"""
Reporter — メトリクスレポートの生成

MetricsReport と操作メトリクスの一覧を受け取り、JSON / HTML / JUnit XML 形式の
レポートファイル、およびコンソール向けのテキストを生成する。

主な機能:
  - generate_json(): JSON レポート（metrics.json）の生成
  - generate_html(): Jinja2 テンプレートを使用した HTML レポート（metrics.html）の生成
  - generate_junit_xml(): JUnit XML レポート（metrics-junit.xml）の生成（CI 統合用）
  - format_text_report(): コンソール表示用テキスト
  - load_json(): metrics.json の読み込み
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader

from .metrics import MetricsReport, MetricStatus, OperationMetric

logger = logging.getLogger(__name__)

# テンプレートディレクトリのパス
_TEMPLATES_DIR = Path(__file__).parent.parent / "templates"


class Reporter:
    """メトリクスレポートの生成クラス。"""

    def __init__(self, title: str = "bdt メトリクスレポート") -> None:
        self._title = title

    # -------------------------------------------------------------------
    # JSON レポート
    # -------------------------------------------------------------------

    def generate_json(
        self,
        report: MetricsReport,
        metrics: list[OperationMetric],
        output_dir: Path,
    ) -> Path:
        """JSON レポートを生成する。

        Args:
            report: 集計結果
            metrics: 操作メトリクスの一覧
            output_dir: 出力先ディレクトリ

        Returns:
            生成された metrics.json のパス
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        output_path = output_dir / "metrics.json"
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.build_report_dict(report, metrics), f, ensure_ascii=False, indent=2)

        logger.info("JSON レポートを生成しました: %s", output_path)
        return output_path

    # -------------------------------------------------------------------
    # HTML レポート
    # -------------------------------------------------------------------

    def generate_html(
        self,
        report: MetricsReport,
        metrics: list[OperationMetric],
        output_dir: Path,
    ) -> Path:
        """HTML レポートを生成する。

        Jinja2 テンプレート（templates/metrics_report.html.j2）を使用して
        スタンドアロン HTML レポートを生成する。
        """
        return self.render_html(self.build_report_dict(report, metrics), output_dir)

    def render_html(self, report_data: dict[str, Any], output_dir: Path) -> Path:
        """レポート用辞書から HTML レポートを生成する。"""
        output_dir.mkdir(parents=True, exist_ok=True)

        env = Environment(
            loader=FileSystemLoader(str(_TEMPLATES_DIR)),
            autoescape=True,
        )
        template = env.get_template("metrics_report.html.j2")
        html_content = template.render(report=report_data)

        output_path = output_dir / "metrics.html"
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(html_content)

        logger.info("HTML レポートを生成しました: %s", output_path)
        return output_path

    # -------------------------------------------------------------------
    # JUnit XML レポート
    # -------------------------------------------------------------------

    def generate_junit_xml(
        self,
        report: MetricsReport,
        metrics: list[OperationMetric],
        output_dir: Path,
    ) -> Path:
        """JUnit XML レポートを生成する。

        各操作メトリクスを testcase として出力する。
        実行中のまま残った操作は skipped として扱う。
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        testsuites = ET.Element("testsuites")
        testsuite = ET.SubElement(testsuites, "testsuite")
        testsuite.set("name", self._title)
        testsuite.set("tests", str(report.total))
        testsuite.set("failures", str(report.failed))
        testsuite.set("skipped", str(report.running))
        total_ms = sum(m.duration_ms or 0.0 for m in metrics)
        testsuite.set("time", f"{total_ms / 1000:.3f}")

        for metric in metrics:
            testcase = ET.SubElement(testsuite, "testcase")
            testcase.set("name", metric.operation)
            testcase.set("classname", metric.browser or "bdt")
            testcase.set("time", f"{(metric.duration_ms or 0.0) / 1000:.3f}")

            if metric.status is MetricStatus.FAILED:
                failure = ET.SubElement(testcase, "failure")
                failure.set("message", metric.error or "")
                failure.text = metric.error or ""
            elif metric.status is MetricStatus.RUNNING:
                ET.SubElement(testcase, "skipped")

        tree = ET.ElementTree(testsuites)
        output_path = output_dir / "metrics-junit.xml"
        ET.indent(tree, space="  ")
        tree.write(str(output_path), encoding="unicode", xml_declaration=True)

        logger.info("JUnit XML レポートを生成しました: %s", output_path)
        return output_path

    # -------------------------------------------------------------------
    # 辞書変換
    # -------------------------------------------------------------------

    def build_report_dict(
        self,
        report: MetricsReport,
        metrics: list[OperationMetric],
        generated_at: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """集計結果と操作メトリクスをレポート用辞書に変換する。"""
        if generated_at is None:
            generated_at = datetime.now()

        return {
            "title": self._title,
            "generated_at": generated_at.isoformat(),
            "summary": {
                "total": report.total,
                "succeeded": report.succeeded,
                "failed": report.failed,
                "running": report.running,
                "success_rate": round(report.success_rate, 1),
                "average_duration_ms": round(report.average_duration_ms, 1),
                "slow_threshold_ms": report.slow_threshold_ms,
            },
            "failures": [
                {"operation": op, "error": err} for op, err in report.failures
            ],
            "slow_operations": [
                {"operation": op, "duration_ms": duration}
                for op, duration in report.slow_operations
            ],
            "operations": [
                {
                    "id": m.id,
                    "operation": m.operation,
                    "status": m.status.value,
                    "start_time": m.start_time,
                    "end_time": m.end_time,
                    "duration_ms": m.duration_ms,
                    "error": m.error,
                    "browser": m.browser,
                }
                for m in metrics
            ],
        }


# ---------------------------------------------------------------------------
# テキスト・読み込み
# ---------------------------------------------------------------------------

def format_text_report(report: MetricsReport) -> str:
    """集計結果をコンソール表示用のテキストに変換する。"""
    lines = [
        "テストメトリクスレポート",
        f"  成功率: {report.success_rate:.1f}% ({report.succeeded}/{report.terminal})",
        f"  平均所要時間: {report.average_duration_ms:.0f}ms",
        f"  総操作数: {report.total}",
        f"  実行中: {report.running}",
    ]
    if report.failures:
        lines.append("  失敗した操作:")
        lines.extend(f"    - {op}: {err}" for op, err in report.failures)
    if report.slow_operations:
        lines.append(f"  低速な操作 (>{report.slow_threshold_ms / 1000:.0f}s):")
        lines.extend(f"    - {op}: {duration:.0f}ms" for op, duration in report.slow_operations)
    return "\n".join(lines)


def load_json(path: Path) -> dict[str, Any]:
    """generate_json() が出力したレポートを読み込む。"""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
