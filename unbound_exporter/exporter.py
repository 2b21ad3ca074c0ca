"""Export Unbound metric records in the Prometheus text exposition format."""

from typing import Iterable, List, Optional, Set

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from .models import MetricKind, MetricRecord
from .utils import escape_label_value, format_sample_value

CONTENT_TYPE = 'text/plain; version=0.0.4; charset=utf-8'


class PrometheusTextFormatter:
    """Render metric records as exposition text.
    
    HELP and TYPE lines are written once per base metric name, the first time
    that name is seen, no matter how many label combinations follow.
    """
    
    def __init__(self, prefix: str = 'unbound'):
        self.prefix = prefix
    
    def metric_name(self, record: MetricRecord) -> str:
        return f'{self.prefix}_{record.name}'
    
    def format_record(self, record: MetricRecord, with_metadata: bool = True) -> str:
        """Format a single record, optionally preceded by its HELP/TYPE lines."""
        lines: List[str] = []
        name = self.metric_name(record)
        if with_metadata:
            kind = record.kind.value if record.kind else MetricKind.GAUGE.value
            lines.append(f'# HELP {name} {record.help}')
            lines.append(f'# TYPE {name} {kind}')
        
        if record.labels:
            label_str = ','.join(f'{k}="{escape_label_value(v)}"' for k, v in record.labels.items())
            lines.append(f'{name}{{{label_str}}} {format_sample_value(record.value)}')
        else:
            lines.append(f'{name} {format_sample_value(record.value)}')
        return '\n'.join(lines) + '\n'
    
    def format(self, records: Iterable[MetricRecord]) -> str:
        """Format an ordered sequence of records into one exposition block."""
        described: Set[str] = set()
        chunks: List[str] = []
        for record in records:
            first = record.name not in described
            described.add(record.name)
            chunks.append(self.format_record(record, with_metadata=first))
        return ''.join(chunks)


def build_scrape_metrics(prefix: str, duration: float, record_count: int,
                         registry: Optional[CollectorRegistry] = None) -> str:
    """Render the exporter's own metrics for one scrape.
    
    A fresh registry is used per scrape so nothing is shared between requests.
    """
    registry = registry or CollectorRegistry()
    scrape_duration = Gauge(
        f'{prefix}_exporter_scrape_duration_seconds',
        'Time spent collecting statistics from Unbound',
        [],
        registry=registry
    )
    records = Gauge(
        f'{prefix}_exporter_records',
        'Number of samples produced from Unbound statistics',
        [],
        registry=registry
    )
    scrape_duration.set(duration)
    records.set(record_count)
    return generate_latest(registry).decode('utf-8')
