"""Shared fixtures for exporter tests."""

import pytest

from unbound_exporter.config import ExporterConfig

ENV_KEYS = (
    'UNBOUND_CONTROL', 'UNBOUND_HOST', 'UNBOUND_PORT', 'UNBOUND_CONFIG', 'CONTROL_TIMEOUT',
    'METRICS_PREFIX', 'LISTEN_ADDRESS', 'LISTEN_PORT', 'MAX_CONNECTIONS', 'TIMEOUT',
    'PID_FILE', 'LOG_LEVEL', 'ENABLE_HISTOGRAM_METRICS', 'ENABLE_THREAD_METRICS',
    'ENABLE_MEMORY_METRICS',
)

SAMPLE_STATS = """\
thread0.num.queries=7
thread0.num.cachehits=5
thread0.num.cachemiss=2
thread1.num.queries=3
total.num.queries=10
total.num.cachehits=6
total.num.cachemiss=4
total.requestlist.avg=0.5
total.recursion.time.avg=0.012345
time.now=1700000000.123456
time.up=1234.567890
mem.cache.rrset=66000
mem.cache.message=66000
num.query.type.A=8
num.query.type.AAAA=2
num.query.class.IN=10
num.answer.rcode.NOERROR=9
num.answer.rcode.NXDOMAIN=1
histogram.query_time_us.100000=7
histogram.query_time_us.1000000=3
"""

SAMPLE_STATUS = """\
version: 1.17.1
verbosity: 1
threads: 2
modules: 2 [ validator iterator ]
uptime: 1234 seconds
options: reuseport control(ssl)
unbound (pid 4242) is running...
"""


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config():
    return ExporterConfig(listen_address='127.0.0.1', listen_port=9167)


class FakeSource:
    """Stands in for UnboundControl without running any binary."""
    
    def __init__(self, stats=SAMPLE_STATS, status=SAMPLE_STATUS, error=None, status_error=None):
        self.stats_text = stats
        self.status_text = status
        self.error = error
        self.status_error = status_error
        self.calls = []
    
    def stats(self):
        self.calls.append('stats_noreset')
        if self.error:
            raise self.error
        return self.stats_text
    
    def status(self):
        self.calls.append('status')
        if self.status_error or self.error:
            raise self.status_error or self.error
        return self.status_text
    
    def probe(self):
        self.calls.append('probe')
        return self.error is None
    
    def until(self, deadline):
        self.deadline = deadline
        return self


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def make_source():
    return FakeSource
