"""Parser for Unbound ``stats_noreset`` output."""

import logging
import re
from re import Match, Pattern
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from .models import MetricKind, MetricRecord, StatCategory
from .utils import extract_value, format_bound_for_label, microseconds_to_seconds

logger = logging.getLogger(__name__)

Labeler = Callable[[Match], Dict[str, str]]


@dataclass(frozen=True)
class StatRule:
    """Maps one statistics key pattern to a metric."""
    pattern: Pattern
    name: str
    help: str
    kind: MetricKind = MetricKind.GAUGE
    category: StatCategory = StatCategory.SCALAR
    labeler: Optional[Labeler] = None

    def match(self, key: str) -> Optional[Match]:
        return self.pattern.fullmatch(key)

    def labels_for(self, match: Match) -> Dict[str, str]:
        if self.labeler is None:
            return {}
        return self.labeler(match)


# Counters kept per worker thread; reported as "total.<suffix>" and "thread<N>.<suffix>"
WORKER_STATS: List[Tuple[str, str, str, MetricKind]] = [
    ('num.queries', 'queries_total', 'Total number of queries', MetricKind.COUNTER),
    ('num.cachehits', 'cache_hits_total', 'Total number of cache hits', MetricKind.COUNTER),
    ('num.cachemiss', 'cache_miss_total', 'Total number of cache misses', MetricKind.COUNTER),
    ('num.prefetch', 'prefetch_total', 'Total number of prefetches', MetricKind.COUNTER),
    ('num.expired', 'expired_total', 'Total number of replies served from expired cache', MetricKind.COUNTER),
    ('num.recursivereplies', 'recursive_replies_total', 'Total number of recursive replies', MetricKind.COUNTER),
    ('num.queries_ip_ratelimited', 'queries_ip_ratelimited_total', 'Total number of queries rate limited by IP', MetricKind.COUNTER),
    ('requestlist.avg', 'request_list_avg', 'Average number of requests in the request list', MetricKind.GAUGE),
    ('requestlist.max', 'request_list_max', 'Maximum number of requests in the request list', MetricKind.GAUGE),
    ('requestlist.overwritten', 'request_list_overwritten_total', 'Total number of overwritten requests', MetricKind.COUNTER),
    ('requestlist.exceeded', 'request_list_exceeded_total', 'Total number of exceeded requests', MetricKind.COUNTER),
    ('requestlist.current.all', 'request_list_current', 'Current number of requests in the request list', MetricKind.GAUGE),
    ('requestlist.current.user', 'request_list_current_user', 'Current number of client requests in the request list', MetricKind.GAUGE),
    ('recursion.time.avg', 'recursion_time_seconds_avg', 'Average time to answer recursive queries', MetricKind.GAUGE),
    ('recursion.time.median', 'recursion_time_seconds_median', 'Median time to answer recursive queries', MetricKind.GAUGE),
    ('tcpusage', 'tcp_usage', 'Number of TCP buffers in use', MetricKind.GAUGE),
]

# Keys matched by exact identity
SCALAR_STATS: List[Tuple[str, str, str, MetricKind, StatCategory]] = [
    ('time.up', 'uptime_seconds', 'Unbound uptime in seconds', MetricKind.COUNTER, StatCategory.UPTIME),
    ('num.answer.secure', 'answers_secure_total', 'Total number of DNSSEC secure answers', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.answer.bogus', 'answers_bogus_total', 'Total number of DNSSEC bogus answers', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.rrset.bogus', 'rrset_bogus_total', 'Total number of RRsets marked bogus', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.query.tcp', 'queries_tcp_total', 'Total number of queries over TCP', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.query.tcpout', 'queries_tcp_out_total', 'Total number of upstream queries over TCP', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.query.tls', 'queries_tls_total', 'Total number of queries over TLS', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.query.ipv6', 'queries_ipv6_total', 'Total number of queries over IPv6', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.query.edns.present', 'queries_edns_total', 'Total number of queries with EDNS', MetricKind.COUNTER, StatCategory.SCALAR),
    ('num.query.edns.DO', 'queries_edns_do_total', 'Total number of queries with the EDNS DO bit', MetricKind.COUNTER, StatCategory.SCALAR),
    ('unwanted.queries', 'unwanted_queries_total', 'Total number of queries refused or dropped', MetricKind.COUNTER, StatCategory.SCALAR),
    ('unwanted.replies', 'unwanted_replies_total', 'Total number of unwanted replies', MetricKind.COUNTER, StatCategory.SCALAR),
    ('mem.cache.rrset', 'memory_cache_rrset_bytes', 'Memory used by RRset cache', MetricKind.GAUGE, StatCategory.MEMORY),
    ('mem.cache.message', 'memory_cache_message_bytes', 'Memory used by message cache', MetricKind.GAUGE, StatCategory.MEMORY),
    ('mem.mod.iterator', 'memory_module_iterator_bytes', 'Memory used by iterator module', MetricKind.GAUGE, StatCategory.MEMORY),
    ('mem.mod.validator', 'memory_module_validator_bytes', 'Memory used by validator module', MetricKind.GAUGE, StatCategory.MEMORY),
    ('mem.mod.respip', 'memory_module_respip_bytes', 'Memory used by respip module', MetricKind.GAUGE, StatCategory.MEMORY),
    ('mem.mod.subnet', 'memory_module_subnet_bytes', 'Memory used by subnet module', MetricKind.GAUGE, StatCategory.MEMORY),
    ('mem.streamwait', 'memory_streamwait_bytes', 'Memory used by stream wait structures', MetricKind.GAUGE, StatCategory.MEMORY),
]

HISTOGRAM_NAME = 'query_duration_seconds_bucket'
HISTOGRAM_HELP = 'Query duration histogram'


def _thread_label(match: Match) -> Dict[str, str]:
    return {'thread': match.group('thread')}


def _microsecond_bucket_label(match: Match) -> Dict[str, str]:
    return {'le': format_bound_for_label(microseconds_to_seconds(match.group('bucket')))}


def _range_bucket_label(match: Match) -> Dict[str, str]:
    upper = int(match.group('sec')) + microseconds_to_seconds(match.group('usec'))
    return {'le': format_bound_for_label(upper)}


def _build_rules() -> Tuple[StatRule, ...]:
    rules: List[StatRule] = []
    
    for key, name, help_text, kind, category in SCALAR_STATS:
        rules.append(StatRule(re.compile(re.escape(key)), name, help_text, kind, category))
    
    for suffix, name, help_text, kind in WORKER_STATS:
        rules.append(StatRule(re.compile(r'total\.' + re.escape(suffix)), name, help_text, kind))
    
    rules.extend([
        StatRule(re.compile(r'num\.query\.type\.(?P<type>.+)'),
                 'queries_by_type_total', 'Total queries by type', MetricKind.COUNTER,
                 StatCategory.QUERY_TYPE, lambda m: {'type': m.group('type')}),
        StatRule(re.compile(r'num\.query\.class\.(?P<qclass>.+)'),
                 'queries_by_class_total', 'Total queries by class', MetricKind.COUNTER,
                 StatCategory.QUERY_CLASS, lambda m: {'class': m.group('qclass')}),
        StatRule(re.compile(r'num\.answer\.rcode\.(?P<rcode>.+)'),
                 'answers_by_rcode_total', 'Total answers by rcode', MetricKind.COUNTER,
                 StatCategory.RCODE, lambda m: {'rcode': m.group('rcode')}),
    ])
    
    for suffix, name, help_text, kind in WORKER_STATS:
        rules.append(StatRule(
            re.compile(r'thread(?P<thread>[0-9]+)\.' + re.escape(suffix)),
            f'thread_{name}', f'{help_text} per thread', kind,
            StatCategory.THREAD, _thread_label,
        ))
    
    rules.extend([
        StatRule(re.compile(r'histogram\.query_time_us\.(?P<bucket>[0-9]+)'),
                 HISTOGRAM_NAME, HISTOGRAM_HELP, MetricKind.HISTOGRAM,
                 StatCategory.HISTOGRAM, _microsecond_bucket_label),
        # Native form: histogram.000000.000000.to.000000.000001
        StatRule(re.compile(r'histogram\.[0-9]+\.[0-9]+\.to\.(?P<sec>[0-9]+)\.(?P<usec>[0-9]+)'),
                 HISTOGRAM_NAME, HISTOGRAM_HELP, MetricKind.HISTOGRAM,
                 StatCategory.HISTOGRAM, _range_bucket_label),
    ])
    return tuple(rules)


STAT_RULES = _build_rules()

VERSION_PATTERN = re.compile(r'^version:\s*(.*)$', re.MULTILINE)
VERSION_NUMBER_PATTERN = re.compile(r'[0-9]+\.[0-9]+\.[0-9]+')
UPTIME_PATTERN = re.compile(r'^uptime:\s*(.*)$', re.MULTILINE)


class UnboundStatsParser:
    """Turns ``unbound-control`` output into metric records."""
    
    def __init__(self, enable_histogram: bool = True, enable_thread: bool = True,
                 enable_memory: bool = True, rules: Tuple[StatRule, ...] = STAT_RULES):
        """Initialize the parser.
        
        Args:
            enable_histogram: Emit query duration histogram buckets
            enable_thread: Emit per-thread breakdowns
            enable_memory: Emit memory-by-component gauges
            rules: Statistics table, evaluated in order; first match wins
        """
        self.rules = rules
        self.disabled: Set[StatCategory] = set()
        if not enable_histogram:
            self.disabled.add(StatCategory.HISTOGRAM)
        if not enable_thread:
            self.disabled.add(StatCategory.THREAD)
        if not enable_memory:
            self.disabled.add(StatCategory.MEMORY)
    
    @classmethod
    def from_config(cls, config) -> 'UnboundStatsParser':
        return cls(
            enable_histogram=config.enable_histogram_metrics,
            enable_thread=config.enable_thread_metrics,
            enable_memory=config.enable_memory_metrics,
        )
    
    def parse(self, stats_text: str, status_text: Optional[str] = None) -> Iterator[MetricRecord]:
        """Parse one ``stats_noreset`` reply (and optionally a ``status`` reply).
        
        Records are yielded grouped by category in StatCategory order and, within
        a category, in input order. A (name, labels) pair is only emitted once.
        """
        grouped: Dict[StatCategory, List[MetricRecord]] = {category: [] for category in StatCategory}
        seen = set()
        
        def add(record: MetricRecord):
            if record.category in self.disabled:
                return
            if record.key in seen:
                logger.debug('Duplicate sample %s%s ignored', record.name, record.labels)
                return
            seen.add(record.key)
            grouped[record.category].append(record)
        
        for line in stats_text.splitlines():
            record = self.parse_line(line)
            if record is not None:
                add(record)
        
        if status_text is not None:
            for record in self.parse_status(status_text, include_uptime=not grouped[StatCategory.UPTIME]):
                add(record)
        
        for category in StatCategory:
            yield from grouped[category]
    
    def parse_line(self, line: str) -> Optional[MetricRecord]:
        """Map a single "key=value" line to a record, or None if it is not recognized."""
        line = line.strip()
        if not line:
            return None
        key, sep, raw_value = line.partition('=')
        if not sep:
            logger.debug('Skipping malformed statistics line: %r', line)
            return None
        key = key.strip()
        
        for rule in self.rules:
            match = rule.match(key)
            if match is None:
                continue
            return MetricRecord(
                name=rule.name,
                value=extract_value(raw_value),
                labels=rule.labels_for(match),
                help=rule.help,
                kind=rule.kind,
                category=rule.category,
            )
        
        logger.debug('Skipping unknown statistic: %s', key)
        return None
    
    def parse_status(self, status_text: str, include_uptime: bool = True) -> List[MetricRecord]:
        """Extract version info and uptime from a ``status`` reply."""
        records = []
        
        version = 'unknown'
        version_match = VERSION_PATTERN.search(status_text)
        if version_match:
            number_match = VERSION_NUMBER_PATTERN.search(version_match.group(1))
            if number_match:
                version = number_match.group(0)
        records.append(MetricRecord(
            name='info',
            value=Decimal(1),
            labels={'version': version},
            help='Unbound version information',
            kind=MetricKind.GAUGE,
            category=StatCategory.INFO,
        ))
        
        uptime_match = UPTIME_PATTERN.search(status_text)
        if include_uptime and uptime_match:
            records.append(MetricRecord(
                name='uptime_seconds',
                value=extract_value(uptime_match.group(1)),
                help='Unbound uptime in seconds',
                kind=MetricKind.COUNTER,
                category=StatCategory.UPTIME,
            ))
        return records
