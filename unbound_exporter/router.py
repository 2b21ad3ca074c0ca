"""Route one inbound HTTP exchange to a response."""

import html
import logging
import re
import socket
import time
from enum import Enum
from typing import BinaryIO, Callable, Optional, Tuple

from .config import ExporterConfig
from .control import StatsSourceError, UnboundControl, collect_metrics
from .exporter import CONTENT_TYPE
from .models import Request, Response
from .response import TEXT_HTML, build_response

logger = logging.getLogger(__name__)

REQUEST_LINE_PATTERN = re.compile(r'^([A-Z]+)\s+(\S+)\s+(HTTP/[0-9]\.[0-9])\s*$')
MAX_LINE = 65536
MAX_HEADERS = 100

INDEX_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
    <title>Unbound Prometheus Exporter</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; }}
        h1 {{ color: #333; }}
        .endpoint {{ margin: 10px 0; }}
        .endpoint a {{ text-decoration: none; color: #0066cc; }}
        .endpoint a:hover {{ text-decoration: underline; }}
    </style>
</head>
<body>
    <h1>Unbound Prometheus Exporter</h1>
    <p>This is a Prometheus exporter for Unbound DNS resolver statistics.</p>
    <h2>Endpoints:</h2>
    <div class="endpoint">
        <strong><a href="/metrics">/metrics</a></strong> - Prometheus metrics
    </div>
    <div class="endpoint">
        <strong><a href="/health">/health</a></strong> - Health check
    </div>
    <h2>Configuration:</h2>
    <ul>
        <li>Listen Address: {listen_address}</li>
        <li>Listen Port: {listen_port}</li>
        <li>Control Binary: {unbound_control}</li>
    </ul>
</body>
</html>'''


class ConnectionState(Enum):
    IDLE = 'idle'
    PARSING_REQUEST_LINE = 'parsing_request_line'
    PARSING_HEADERS = 'parsing_headers'
    ROUTED = 'routed'
    RESPONDED = 'responded'
    CLOSED = 'closed'


def parse_request_line(line: str) -> Optional[Request]:
    """Parse "METHOD SP PATH SP HTTP-VERSION"; None when the line does not match."""
    match = REQUEST_LINE_PATTERN.match(line)
    if not match:
        return None
    return Request(method=match.group(1), path=match.group(2), http_version=match.group(3))


class RequestRouter:
    """Handles exactly one connection: read the request, decide the response.
    
    Instances are not reused; a new router is created per connection.
    """
    
    def __init__(self, config: ExporterConfig, source: Optional[UnboundControl] = None,
                 collector: Callable[[ExporterConfig, UnboundControl], str] = collect_metrics,
                 deadline: Optional[float] = None, connection: Optional[socket.socket] = None):
        """Create a router for one connection.
        
        Args:
            config: Exporter configuration
            source: Statistics source used by /metrics and /health
            collector: Scrape pipeline run for /metrics
            deadline: time.monotonic() value by which the exchange must be finished
            connection: Socket whose timeout is narrowed to the time left before each read
        """
        self.config = config
        self.deadline = deadline
        self.connection = connection
        self.source = source or UnboundControl(config)
        self.collector = collector
        self.state = ConnectionState.IDLE
        self.request: Optional[Request] = None
    
    def handle(self, rfile: BinaryIO, client_address: Optional[Tuple[str, int]] = None) -> Response:
        """Read one request from rfile and return the response to send."""
        self.state = ConnectionState.PARSING_REQUEST_LINE
        self.request = parse_request_line(self._readline(rfile))
        if self.request is None:
            self.state = ConnectionState.RESPONDED
            logger.info('Bad request from %s', _peer(client_address))
            return build_response(400, '400 Bad Request')
        
        self.state = ConnectionState.PARSING_HEADERS
        self._discard_headers(rfile)
        
        self.state = ConnectionState.ROUTED
        logger.info('Request: %s %s from %s', self.request.method, self.request.path, _peer(client_address))
        try:
            response = self.route(self.request)
        except Exception:
            logger.exception('Unhandled error serving %s', self.request.path)
            response = build_response(500, '500 Internal Server Error')
        self.state = ConnectionState.RESPONDED
        return response
    
    def close(self):
        self.state = ConnectionState.CLOSED
    
    def route(self, request: Request) -> Response:
        path = request.path.split('?', 1)[0]
        if request.method != 'GET':
            return self.serve_404(request.path)
        if path == '/metrics':
            return self.serve_metrics()
        if path in ('/health', '/healthz'):
            return self.serve_health()
        if path == '/':
            return self.serve_index()
        return self.serve_404(request.path)
    
    def serve_metrics(self) -> Response:
        try:
            body = self.collector(self.config, self.source)
        except StatsSourceError as e:
            logger.warning('Failed to collect metrics: %s', e)
            return build_response(503, f'503 Service Unavailable - Failed to collect metrics: {e}\n')
        response = build_response(200, body, CONTENT_TYPE)
        logger.info('Served metrics (%d bytes)', len(response.body))
        return response
    
    def serve_health(self) -> Response:
        if self.source.probe():
            logger.debug('Health check passed')
            return build_response(200, 'Status: OK')
        logger.warning('Health check failed: Cannot connect to Unbound')
        return build_response(503, 'Status: ERROR: Cannot connect to Unbound')
    
    def serve_index(self) -> Response:
        page = INDEX_TEMPLATE.format(
            listen_address=html.escape(self.config.listen_address),
            listen_port=self.config.listen_port,
            unbound_control=html.escape(self.config.unbound_control),
        )
        return build_response(200, page, TEXT_HTML)
    
    def serve_404(self, path: str) -> Response:
        logger.info('404 Not Found: %s', path)
        return build_response(404, f'404 Not Found: {path}')
    
    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()
    
    def _readline(self, rfile: BinaryIO) -> str:
        remaining = self.remaining()
        if remaining is not None:
            if remaining <= 0:
                raise socket.timeout('request deadline exceeded')
            if self.connection is not None:
                self.connection.settimeout(remaining)
        return rfile.readline(MAX_LINE + 1).decode('utf-8', errors='replace').rstrip('\r\n')
    
    def _discard_headers(self, rfile: BinaryIO):
        for _ in range(MAX_HEADERS):
            if not self._readline(rfile):
                return


def _peer(client_address: Optional[Tuple[str, int]]) -> str:
    if not client_address:
        return 'unknown'
    return f'{client_address[0]}:{client_address[1]}'
