"""Statistics source backed by the ``unbound-control`` binary."""

import logging
import shutil
import subprocess
import time
from typing import List, Optional

from .config import ExporterConfig
from .exporter import PrometheusTextFormatter, build_scrape_metrics
from .parser import UnboundStatsParser

logger = logging.getLogger(__name__)


class ExporterError(Exception):
    """Base class for exporter failures."""


class StatsSourceError(ExporterError):
    """Unbound could not be reached or returned an error."""


class DependencyMissingError(ExporterError):
    """A required external binary is not installed."""


class UnboundControl:
    """Runs single administrative commands over Unbound's control channel.
    
    Every call is one attempt bounded by ``control_timeout``; there are no retries.
    """
    
    def __init__(self, config: ExporterConfig, deadline: Optional[float] = None):
        self.config = config
        self.deadline = deadline
    
    def until(self, deadline: float) -> 'UnboundControl':
        """Return a source whose calls all finish by deadline (a time.monotonic() value)."""
        return UnboundControl(self.config, deadline)
    
    def call_timeout(self) -> float:
        """Time allowed for the next call: control_timeout, clamped to the deadline."""
        if self.deadline is None:
            return self.config.control_timeout
        return min(self.config.control_timeout, self.deadline - time.monotonic())
    
    def command_line(self, command: str) -> List[str]:
        args = [self.config.unbound_control]
        if self.config.unbound_config:
            args.extend(['-c', str(self.config.unbound_config)])
        if self.config.is_remote:
            args.extend(['-s', f'{self.config.unbound_host}@{self.config.unbound_port}'])
        args.append(command)
        return args
    
    def ensure_available(self) -> str:
        """Return the resolved binary path or raise DependencyMissingError."""
        path = shutil.which(self.config.unbound_control)
        if path is None:
            raise DependencyMissingError(f'{self.config.unbound_control} not found in PATH')
        return path
    
    def run(self, command: str) -> str:
        """Run one command and return its output.
        
        Raises:
            StatsSourceError: the binary failed, timed out, or could not be started
        """
        args = self.command_line(command)
        timeout = self.call_timeout()
        if timeout <= 0:
            raise StatsSourceError(f'no time left to run {command}')
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise StatsSourceError(f'{command} timed out after {timeout:.1f}s') from e
        except OSError as e:
            raise StatsSourceError(f'cannot run {self.config.unbound_control}: {e}') from e
        
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip() or f'exit code {result.returncode}'
            raise StatsSourceError(f'{command} failed: {detail}')
        return result.stdout
    
    def stats(self) -> str:
        return self.run('stats_noreset')
    
    def status(self) -> str:
        return self.run('status')
    
    def probe(self) -> bool:
        """Lightweight connectivity check."""
        try:
            self.status()
        except StatsSourceError as e:
            logger.warning('Unbound connectivity probe failed: %s', e)
            return False
        return True


def collect_metrics(config: ExporterConfig, source: Optional[UnboundControl] = None) -> str:
    """Run one scrape: query Unbound, parse the reply, and format it.
    
    Raises:
        StatsSourceError: statistics could not be collected
    """
    source = source or UnboundControl(config)
    started = time.monotonic()
    
    stats_text = source.stats()
    try:
        status_text: Optional[str] = source.status()
    except StatsSourceError as e:
        # version info is optional; the stats themselves were collected
        logger.warning('Could not read Unbound status: %s', e)
        status_text = None
    
    parser = UnboundStatsParser.from_config(config)
    records = list(parser.parse(stats_text, status_text))
    body = PrometheusTextFormatter(config.metrics_prefix).format(records)
    
    duration = time.monotonic() - started
    logger.debug('Collected %d samples in %.3fs', len(records), duration)
    return body + build_scrape_metrics(config.metrics_prefix, duration, len(records))
