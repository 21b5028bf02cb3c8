"""Utilities for the election workflow."""

from .utils import (
    setup_logging,
    save_results,
    PerformanceMonitor,
    PerformanceMetrics,
    create_results_summary,
    create_performance_report,
    get_system_info,
    format_duration
)

__all__ = [
    'setup_logging',
    'save_results',
    'PerformanceMonitor',
    'PerformanceMetrics',
    'create_results_summary',
    'create_performance_report',
    'get_system_info',
    'format_duration'
]
