"""Data models for Unbound statistics and HTTP exchanges."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Dict, Tuple


class MetricKind(str, Enum):
    """Prometheus metric type written to the TYPE line."""
    GAUGE = 'gauge'
    COUNTER = 'counter'
    HISTOGRAM = 'histogram'


class StatCategory(IntEnum):
    """Statistic categories, in the order records are emitted."""
    INFO = 0
    UPTIME = 1
    SCALAR = 2
    QUERY_TYPE = 3
    QUERY_CLASS = 4
    RCODE = 5
    MEMORY = 6
    THREAD = 7
    HISTOGRAM = 8


@dataclass(frozen=True)
class MetricRecord:
    """A single labeled sample produced from one statistics line."""
    name: str
    value: Decimal
    labels: Dict[str, str] = field(default_factory=dict)  # insertion order is kept
    help: str = ''
    kind: MetricKind = MetricKind.GAUGE
    category: StatCategory = StatCategory.SCALAR

    @property
    def key(self) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Identity of the sample line within one scrape."""
        return self.name, tuple(self.labels.items())


@dataclass
class Request:
    """Parsed HTTP request line."""
    method: str
    path: str
    http_version: str


@dataclass
class Response:
    """Decided HTTP response, ready to be serialized."""
    status_code: int
    status_text: str
    headers: Dict[str, str]
    body: bytes

    def to_bytes(self) -> bytes:
        head = f'HTTP/1.1 {self.status_code} {self.status_text}\r\n'
        for name, value in self.headers.items():
            head += f'{name}: {value}\r\n'
        return head.encode('latin-1') + b'\r\n' + self.body
