# コアモジュール
# 要素検出、リトライ実行、メトリクス収集、性能計測、待機戦略、レポート生成を提供

from .detector import CandidateFailure, ElementDetector, ElementNotFoundError
from .metrics import MetricsCollector, MetricsReport, MetricStatus, OperationMetric
from .outcome import ActionOutcome, ActionResult, attempt_action
from .performance import PerformanceBenchmarks, PerformanceMonitor
from .reporting import Reporter, format_text_report
from .retry import RetryExhaustedError, execute_with_retry, retry_with_backoff
from .selector import Selector, to_selector

__all__ = [
    "ActionOutcome",
    "ActionResult",
    "CandidateFailure",
    "ElementDetector",
    "ElementNotFoundError",
    "MetricStatus",
    "MetricsCollector",
    "MetricsReport",
    "OperationMetric",
    "PerformanceBenchmarks",
    "PerformanceMonitor",
    "Reporter",
    "RetryExhaustedError",
    "Selector",
    "attempt_action",
    "execute_with_retry",
    "format_text_report",
    "retry_with_backoff",
    "to_selector",
]
