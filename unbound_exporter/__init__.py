"""Prometheus exporter for Unbound DNS resolver statistics."""

__version__ = '1.0.0'

from .models import MetricKind, MetricRecord, Request, Response, StatCategory
from .parser import STAT_RULES, StatRule, UnboundStatsParser
from .exporter import PrometheusTextFormatter
from .control import (
    DependencyMissingError,
    ExporterError,
    StatsSourceError,
    UnboundControl,
    collect_metrics,
)
from .config import ExporterConfig, load_config
from .router import RequestRouter
from .response import build_response

__all__ = [
    'MetricKind',
    'MetricRecord',
    'Request',
    'Response',
    'StatCategory',
    'STAT_RULES',
    'StatRule',
    'UnboundStatsParser',
    'PrometheusTextFormatter',
    'DependencyMissingError',
    'ExporterError',
    'StatsSourceError',
    'UnboundControl',
    'collect_metrics',
    'ExporterConfig',
    'load_config',
    'RequestRouter',
    'build_response',
]
