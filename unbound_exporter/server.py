#!/usr/bin/env python3
"""
Serve Unbound statistics to Prometheus over HTTP.

Each connection is handled by one worker from a bounded pool, answered once,
and closed.
"""

import argparse
import logging
import os
import signal
import socket
import socketserver
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from . import __version__
from .config import ExporterConfig, load_config
from .control import DependencyMissingError, UnboundControl
from .router import RequestRouter
from .utils import setup_logging

logger = logging.getLogger(__name__)

COMMANDS = ('start', 'stop', 'restart', 'test', 'version', 'help')

# Time allowed for writing a response once it has been decided
MIN_WRITE_TIMEOUT = 1.0


class ServerShutdown(Exception):
    """Raised in the main thread when SIGTERM asks the server to stop."""


class ExporterRequestHandler(socketserver.StreamRequestHandler):
    """One request, one response, then the connection is closed."""
    
    def setup(self):
        # the whole exchange, not each read, must fit in the timeout
        self.deadline = time.monotonic() + self.server.config.timeout
        self.timeout = self.server.config.timeout
        super().setup()
    
    def handle(self):
        router = RequestRouter(
            self.server.config,
            self.server.source.until(self.deadline),
            deadline=self.deadline,
            connection=self.connection,
        )
        try:
            response = router.handle(self.rfile, self.client_address)
            self.connection.settimeout(max(router.remaining(), MIN_WRITE_TIMEOUT))
            self.wfile.write(response.to_bytes())
        except socket.timeout:
            logger.warning('Connection from %s:%s timed out', *self.client_address[:2])
        finally:
            router.close()


class MetricsHTTPServer(socketserver.TCPServer):
    """TCP listener dispatching connections to a fixed-size worker pool."""
    
    allow_reuse_address = True
    
    def __init__(self, config: ExporterConfig, source: Optional[UnboundControl] = None,
                 handler_class=ExporterRequestHandler, bind_and_activate: bool = True):
        self.config = config
        self.source = source or UnboundControl(config)
        self.executor = ThreadPoolExecutor(max_workers=config.max_connections,
                                           thread_name_prefix='unbound-exporter')
        # accepted connections, queued or running; the accept loop waits at the ceiling
        self.slots = threading.BoundedSemaphore(config.max_connections)
        super().__init__((config.listen_address, config.listen_port), handler_class, bind_and_activate)
    
    def process_request(self, request, client_address):
        self.slots.acquire()
        try:
            self.executor.submit(self._process_request_worker, request, client_address)
        except RuntimeError:
            # executor already shut down
            self.slots.release()
            self.shutdown_request(request)
    
    def _process_request_worker(self, request, client_address):
        try:
            self.finish_request(request, client_address)
        except Exception:
            self.handle_error(request, client_address)
        finally:
            self.shutdown_request(request)
            self.slots.release()
    
    def handle_error(self, request, client_address):
        logger.exception('Error handling connection from %s', client_address)
    
    def server_close(self):
        super().server_close()
        self.executor.shutdown(wait=True)


def _terminate(signum, frame):
    raise ServerShutdown()


def write_pid_file(pid_file: Optional[Path]):
    if pid_file:
        pid_file.write_text(f'{os.getpid()}\n')


def remove_pid_file(pid_file: Optional[Path]):
    if pid_file and pid_file.exists():
        pid_file.unlink()


def run_server(config: ExporterConfig) -> int:
    """Check dependencies, then serve until interrupted.
    
    Returns:
        Process exit code
    """
    source = UnboundControl(config)
    try:
        path = source.ensure_available()
    except DependencyMissingError as e:
        logger.error('%s', e)
        return 1
    
    logger.info('Starting Unbound Prometheus Exporter HTTP Server')
    logger.info('Listening on %s:%s', config.listen_address, config.listen_port)
    logger.info('Control binary: %s', path)
    logger.info('Max connections: %s', config.max_connections)
    logger.info('Timeout: %ss', config.timeout)
    
    if source.probe():
        logger.info('Exporter test successful')
    else:
        logger.warning('Exporter test failed, but continuing anyway')
    
    server = MetricsHTTPServer(config, source)
    previous_handler = signal.signal(signal.SIGTERM, _terminate)
    write_pid_file(config.pid_file)
    try:
        server.serve_forever()
    except (KeyboardInterrupt, ServerShutdown):
        pass
    finally:
        logger.info('Stopping Unbound Prometheus Exporter HTTP Server')
        signal.signal(signal.SIGTERM, previous_handler)
        server.server_close()
        remove_pid_file(config.pid_file)
    return 0


def stop_server(config: ExporterConfig) -> int:
    """Signal a running server recorded in the pid file."""
    if not config.pid_file or not config.pid_file.exists():
        logger.error('No pid file found; is the server running?')
        return 1
    try:
        pid = int(config.pid_file.read_text().strip())
        os.kill(pid, signal.SIGTERM)
    except (ValueError, ProcessLookupError) as e:
        logger.error('Could not stop server: %s', e)
        remove_pid_file(config.pid_file)
        return 1
    except OSError as e:
        logger.error('Could not stop server: %s', e)
        return 1
    logger.info('Sent SIGTERM to %d', pid)
    return 0


def check_configuration(config: ExporterConfig) -> int:
    logger.info('Testing HTTP server configuration...')
    try:
        UnboundControl(config).ensure_available()
    except DependencyMissingError as e:
        logger.error('%s', e)
        return 1
    logger.info('Configuration test successful')
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='unbound-exporter-server',
        description='Serve Unbound statistics as Prometheus metrics over HTTP',
        epilog='Configured through LISTEN_ADDRESS, LISTEN_PORT, MAX_CONNECTIONS, TIMEOUT, '
               'PID_FILE and the UNBOUND_* variables.'
    )
    parser.add_argument(
        'command',
        nargs='?',
        default='start',
        choices=COMMANDS,
        help='start (default), stop, restart, test, version or help'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    
    if args.command == 'version':
        print(f'Unbound Exporter HTTP Server v{__version__}')
        return 0
    if args.command == 'help':
        parser.print_help()
        return 0
    
    try:
        config = load_config()
    except ValidationError as e:
        print(f'Error: Invalid configuration: {e}', file=sys.stderr)
        return 1
    setup_logging(config.log_level)
    
    if args.command == 'test':
        return check_configuration(config)
    if args.command == 'stop':
        return stop_server(config)
    if args.command == 'restart':
        if config.pid_file and config.pid_file.exists():
            stop_server(config)
            time.sleep(2)
    return run_server(config)


if __name__ == '__main__':
    sys.exit(main())
