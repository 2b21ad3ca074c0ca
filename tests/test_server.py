"""End-to-end tests against a live listener."""

import os
import signal
import socket
import threading
import time
from unittest.mock import patch

import pytest
import requests

from unbound_exporter.config import ExporterConfig
from unbound_exporter.control import StatsSourceError
from unbound_exporter.server import MetricsHTTPServer, run_server


@pytest.fixture
def serve(make_source):
    servers = []
    
    def start(source=None, server_class=MetricsHTTPServer, **overrides):
        settings = {'listen_address': '127.0.0.1', 'listen_port': 0, 'timeout': 5, **overrides}
        config = ExporterConfig(**settings)
        server = server_class(config, source or make_source())
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        host, port = server.server_address[:2]
        return f'http://{host}:{port}', server
    
    yield start
    
    for server in servers:
        server.shutdown()
        server.server_close()


def raw_exchange(server, payload):
    with socket.create_connection(server.server_address[:2], timeout=5) as sock:
        sock.sendall(payload)
        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b''.join(chunks)


def test_metrics(serve):
    url, _ = serve()
    response = requests.get(f'{url}/metrics', timeout=5)
    assert response.status_code == 200
    assert response.headers['Content-Type'] == 'text/plain; version=0.0.4; charset=utf-8'
    assert response.headers['Connection'] == 'close'
    assert int(response.headers['Content-Length']) == len(response.content)
    assert 'unbound_thread_queries_total{thread="0"} 7' in response.text


def test_metrics_unavailable(serve, make_source):
    url, _ = serve(make_source(error=StatsSourceError('refused')))
    response = requests.get(f'{url}/metrics', timeout=5)
    assert response.status_code == 503
    assert response.text


def test_health_and_not_found(serve):
    url, _ = serve()
    assert requests.get(f'{url}/healthz', timeout=5).text == 'Status: OK'
    response = requests.get(f'{url}/bogus', timeout=5)
    assert response.status_code == 404
    assert '/bogus' in response.text


def test_connection_closed_after_one_response(serve):
    _, server = serve()
    # the server closes the socket after the response, so recv reaches EOF
    reply = raw_exchange(server, b'GET /health HTTP/1.1\r\nHost: x\r\nConnection: keep-alive\r\n\r\n')
    assert reply.startswith(b'HTTP/1.1 200 OK\r\n')
    assert reply.endswith(b'\r\n\r\nStatus: OK')


def test_bad_request_line(serve):
    _, server = serve()
    reply = raw_exchange(server, b'GET /metrics\r\n\r\n')
    assert reply.startswith(b'HTTP/1.1 400 Bad Request\r\n')


def test_concurrent_requests_with_small_pool(serve):
    url, _ = serve(max_connections=2)
    results = []
    
    def fetch():
        results.append(requests.get(f'{url}/metrics', timeout=10).status_code)
    
    threads = [threading.Thread(target=fetch) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results == [200] * 6


class CountingServer(MetricsHTTPServer):
    
    accepted = 0
    
    def get_request(self):
        request = super().get_request()
        self.accepted += 1
        return request


def read_until_closed(sock):
    chunks = []
    try:
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    except ConnectionResetError:
        pass
    return b''.join(chunks)


def test_idle_connection_closed_after_timeout(serve):
    _, server = serve(timeout=0.5)
    with socket.create_connection(server.server_address[:2], timeout=5) as sock:
        started = time.monotonic()
        assert read_until_closed(sock) == b''
        assert time.monotonic() - started < 3


def test_slow_headers_cut_off_at_deadline(serve):
    url, server = serve(timeout=1, max_connections=1)
    sock = socket.create_connection(server.server_address[:2], timeout=5)
    stop = threading.Event()
    
    def trickle():
        try:
            sock.sendall(b'GET /metrics HTTP/1.1\r\n')
            while not stop.wait(0.3):
                sock.sendall(b'X-Slow: 1\r\n')
        except OSError:
            pass
    
    sender = threading.Thread(target=trickle, daemon=True)
    started = time.monotonic()
    sender.start()
    try:
        reply = read_until_closed(sock)
        elapsed = time.monotonic() - started
    finally:
        stop.set()
        sender.join()
        sock.close()
    
    assert b'200 OK' not in reply
    assert elapsed < 2.5
    # the single worker is free again
    assert requests.get(f'{url}/health', timeout=5).status_code == 200


def test_accept_loop_waits_at_connection_ceiling(serve):
    _, server = serve(server_class=CountingServer, timeout=2, max_connections=1)
    address = server.server_address[:2]
    clients = [socket.create_connection(address, timeout=5)]
    try:
        time.sleep(0.2)
        clients.extend(socket.create_connection(address, timeout=5) for _ in range(4))
        time.sleep(0.5)
        # one held by the worker, one accepted and waiting for a slot
        assert server.accepted <= 2
    finally:
        for client in clients:
            client.close()


def test_run_server_pid_file_and_sigterm(tmp_path):
    pid_file = tmp_path / 'exporter.pid'
    config = ExporterConfig(listen_address='127.0.0.1', listen_port=0, pid_file=pid_file)
    seen = {}
    
    def serve_forever(self, poll_interval=0.5):
        seen['pid'] = pid_file.read_text().strip()
        os.kill(os.getpid(), signal.SIGTERM)
        time.sleep(5)
    
    previous = signal.getsignal(signal.SIGTERM)
    with patch('unbound_exporter.control.shutil.which', return_value='/usr/sbin/unbound-control'), \
            patch('unbound_exporter.server.UnboundControl.probe', return_value=True), \
            patch.object(MetricsHTTPServer, 'serve_forever', serve_forever):
        assert run_server(config) == 0
    
    assert seen['pid'] == str(os.getpid())
    assert not pid_file.exists()
    assert signal.getsignal(signal.SIGTERM) is previous
