"""Tests for the obs-provision CLI"""
import json

import pytest
from click.testing import CliRunner

from obs_provision.cli import cli
from obs_provision.config import parse_config

HUB = {'sshHost': '10.0.0.12', 'targetsDir': '/srv/prometheus/targets'}


@pytest.fixture
def runner():
    """CLI test runner fixture"""
    return CliRunner()


@pytest.fixture
def obj(executor, store):
    return {
        'settings': parse_config({'store': {'backend': 'memory'}, 'hub': HUB}),
        'executor': executor,
        'store': store,
    }


def test_cli_help(runner):
    """Test CLI displays help"""
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    assert 'Provision and register monitoring agents' in result.output


def test_methods(runner, obj):
    result = runner.invoke(cli, ['methods'], obj=obj)

    assert result.exit_code == 0
    assert 'agent (@user/monitoring/agent 2026.02.17.1)' in result.output
    assert 'enableTextfileCollector' in result.output
    assert 'register' in result.output


def test_call_install(runner, obj, executor, store):
    """Test generic dispatch prints the written payload"""
    result = runner.invoke(cli, ['call', 'agent', 'install', '-a', 'vmName=web1', '-g', 'sshHost=10.0.0.5'], obj=obj)

    assert result.exit_code == 0, result.output
    assert '✓ Wrote install/web1@1' in result.output
    assert '"nodeExporterRunning": true' in result.output
    assert store.read('install', 'web1')['promtailInstalled'] is True
    assert executor.calls[0].host == '10.0.0.5'


def test_call_uses_configured_globals(runner, obj, executor):
    result = runner.invoke(cli, ['call', 'hub', 'register', '-a', 'vmName=vm1', '-a', 'targetIp=10.0.0.5'], obj=obj)

    assert result.exit_code == 0, result.output
    assert executor.calls[0].host == '10.0.0.12'
    assert executor.calls[0].user == 'keeb'


def test_call_validation_error(runner, obj, executor):
    """Test missing host fails before any remote call"""
    result = runner.invoke(cli, ['call', 'agent', 'install', '-a', 'vmName=web1'], obj=obj)

    assert result.exit_code == 1
    assert 'sshHost' in result.output
    assert executor.calls == []


def test_call_command_failed(runner, obj, executor):
    executor.on('apk update', exit_code=1, stderr='ERROR: temporary error (try again later)')

    result = runner.invoke(cli, ['call', 'agent', 'install', '-a', 'vmName=web1', '-g', 'sshHost=10.0.0.5'], obj=obj)

    assert result.exit_code == 1
    assert 'install on 10.0.0.5' in result.output
    assert 'temporary error' in result.output


def test_call_bad_pair(runner, obj):
    result = runner.invoke(cli, ['call', 'agent', 'install', '-a', 'vmName'], obj=obj)

    assert result.exit_code == 2
    assert 'key=value' in result.output


def test_unknown_model(runner, obj):
    result = runner.invoke(cli, ['call', 'db', 'install'], obj=obj)

    assert result.exit_code == 1
    assert 'Unknown model' in result.output


def test_onboard(runner, obj, executor, store):
    """Test the full install, configure and register flow"""
    executor.on('localhost:3100/ready', stdout='ready\n')
    executor.on('localhost:9090/-/ready', stdout='Prometheus Server is Ready.\n')

    result = runner.invoke(cli, ['onboard', 'web1', '10.0.0.5'], obj=obj)

    assert result.exit_code == 0, result.output
    assert 'web1 onboarded' in result.output
    assert store.read('config', 'web1')['lokiUrl'] == 'http://10.0.0.12:3100/loki/api/v1/push'
    assert store.read('textfile', 'web1')['textfileCollectorEnabled'] is True
    assert store.read('target', 'web1')['targetFile'] == '/srv/prometheus/targets/web1.json'
    hosts = [call.host for call in executor.calls]
    assert hosts[0] == '10.0.0.12' and hosts[-1] == '10.0.0.12'
    assert '10.0.0.5' in hosts


def test_onboard_stops_at_first_failure(runner, obj, executor, store):
    executor.on('wget -qO /dev/null', exit_code=1)

    result = runner.invoke(cli, ['onboard', 'web1', '10.0.0.5', '--no-textfile'], obj=obj)

    assert result.exit_code == 1
    assert 'verify-node-exporter' in result.output
    assert store.versions('target', 'web1') == []
    assert store.versions('config', 'web1') == []


def test_show_and_history(runner, obj):
    for _ in range(2):
        runner.invoke(cli, ['call', 'agent', 'install', '-a', 'vmName=web1', '-g', 'sshHost=10.0.0.5'], obj=obj)

    show = runner.invoke(cli, ['show', 'install', 'web1'], obj=obj)
    assert show.exit_code == 0
    assert json.loads(show.stdout)['nodeExporterRunning'] is True

    history = runner.invoke(cli, ['history', 'install', 'web1'], obj=obj)
    assert history.exit_code == 0
    assert len(history.stdout.strip().splitlines()) == 2


def test_show_missing(runner, obj):
    result = runner.invoke(cli, ['show', 'install', 'ghost'], obj=obj)

    assert result.exit_code == 1
    assert 'ghost' in result.output


def test_gc(runner, obj):
    result = runner.invoke(cli, ['gc', 'install', 'web1'], obj=obj)

    assert result.exit_code == 0
    assert 'Reclaimed 0 version(s)' in result.output


def test_missing_config_file(runner):
    result = runner.invoke(cli, ['--config', '/nonexistent/provision.yml', 'methods'])

    assert result.exit_code == 1
    assert 'Config file not found' in result.output
