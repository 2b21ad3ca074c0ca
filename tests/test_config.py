"""Tests for environment configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from unbound_exporter.config import ExporterConfig, load_config


def test_defaults():
    config = load_config()
    assert config.unbound_control == 'unbound-control'
    assert config.unbound_host == '127.0.0.1'
    assert config.unbound_port == 8953
    assert config.metrics_prefix == 'unbound'
    assert config.listen_address == '0.0.0.0'
    assert config.listen_port == 9167
    assert config.max_connections == 10
    assert config.timeout == 30
    assert config.control_timeout == 10
    assert config.enable_histogram_metrics is True
    assert config.enable_thread_metrics is True
    assert config.enable_memory_metrics is True
    assert config.pid_file is None
    assert config.is_remote is False


def test_environment(monkeypatch):
    monkeypatch.setenv('UNBOUND_HOST', '192.0.2.1')
    monkeypatch.setenv('UNBOUND_PORT', '8954')
    monkeypatch.setenv('METRICS_PREFIX', 'dns')
    monkeypatch.setenv('LISTEN_PORT', '9200')
    monkeypatch.setenv('MAX_CONNECTIONS', '4')
    monkeypatch.setenv('TIMEOUT', '5')
    monkeypatch.setenv('ENABLE_THREAD_METRICS', 'false')
    monkeypatch.setenv('PID_FILE', '/run/unbound-exporter.pid')
    monkeypatch.setenv('LOG_LEVEL', 'DEBUG')
    
    config = load_config()
    assert config.unbound_host == '192.0.2.1'
    assert config.is_remote is True
    assert config.unbound_port == 8954
    assert config.metrics_prefix == 'dns'
    assert config.listen_port == 9200
    assert config.max_connections == 4
    assert config.timeout == 5
    assert config.enable_thread_metrics is False
    assert config.pid_file == Path('/run/unbound-exporter.pid')
    assert config.log_level == 'debug'


def test_overrides_take_precedence(monkeypatch):
    monkeypatch.setenv('LISTEN_PORT', '9200')
    assert load_config(listen_port=9300).listen_port == 9300


def test_frozen():
    config = ExporterConfig()
    with pytest.raises(ValidationError):
        config.listen_port = 1


@pytest.mark.parametrize('env,value', [
    ('LISTEN_PORT', '70000'),
    ('UNBOUND_PORT', '0'),
    ('MAX_CONNECTIONS', '0'),
    ('TIMEOUT', '0'),
    ('METRICS_PREFIX', '1bad-prefix'),
    ('LOG_LEVEL', 'chatty'),
])
def test_invalid_values(monkeypatch, env, value):
    monkeypatch.setenv(env, value)
    with pytest.raises(ValidationError):
        load_config()
