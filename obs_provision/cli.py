"""
obs-provision command line interface.
"""
import json
import sys

import click

from obs_provision.config import load_config
from obs_provision.errors import ProvisionError
from obs_provision.logger import setup_logging
from obs_provision.models import MODELS, get_model
from obs_provision.models.hub import HUB_KEY


def _parse_pairs(pairs, option):
    values = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise click.BadParameter(f'expected key=value, got {pair!r}', param_hint=option)
        values[key] = value
    return values


def _store(ctx):
    obj = ctx.obj
    if 'store' not in obj:
        obj['store'] = obj['settings'].open_store()
        ctx.call_on_close(obj['store'].close)
    store = obj['store']
    for model in MODELS.values():
        for spec in model.resources.values():
            store.register(spec)
    return store


def _executor(ctx):
    obj = ctx.obj
    if 'executor' not in obj:
        obj['executor'] = obj['settings'].executor()
    return obj['executor']


def _dispatch(ctx, model_name, method, args, global_overrides=None):
    settings = ctx.obj['settings']
    model = get_model(model_name)
    click.echo(f'\n=== {model.name}.{method} ===')
    result = model.dispatch(
        method, args, settings.global_args(model.name, global_overrides),
        store=_store(ctx), executor=_executor(ctx))
    for entry in result.log:
        marker = '✓' if entry.exit_code == 0 else '~'
        click.echo(f'  {marker} {entry.name}')
    for handle in result.data_handles:
        click.echo(click.style(f'✓ Wrote {handle}', fg='green'))
    return result


def _fail(error):
    click.echo(click.style(f'❌ {error}', fg='red'), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version='0.1.0')
@click.option('--config', 'config_path', type=click.Path(), default=None,
              help='Path to provision.yml (default: $OBS_PROVISION_CONFIG)')
@click.option('--log-level', default=None, help='Override log level')
@click.option('--json/--text', 'use_json', default=None, help='JSON or plain text log lines')
@click.pass_context
def cli(ctx, config_path, log_level, use_json):
    """Provision and register monitoring agents over SSH"""
    ctx.ensure_object(dict)
    if 'settings' not in ctx.obj:
        try:
            ctx.obj['settings'] = load_config(config_path)
        except ProvisionError as e:
            _fail(e)
    settings = ctx.obj['settings']
    if log_level:
        settings.log_level = log_level.upper()
    if use_json is not None:
        settings.log_json = use_json
    setup_logging(settings.log_level, settings.log_file, settings.log_json)


@cli.command()
def methods():
    """List models and their methods"""
    for model in MODELS.values():
        click.echo(click.style(f'{model.name} ({model.type} {model.version})', bold=True))
        for method in model.methods.values():
            click.echo(f'  {method.name}: {method.description}')


@cli.command()
@click.argument('model_name')
@click.argument('method')
@click.option('-a', '--arg', 'args', multiple=True, help='Method argument key=value')
@click.option('-g', '--global', 'global_args', multiple=True, help='Global argument key=value')
@click.pass_context
def call(ctx, model_name, method, args, global_args):
    """
    Run one method

    MODEL_NAME: agent or hub
    METHOD: e.g. install, configure, discover
    """
    parsed_args = _parse_pairs(args, '--arg')
    parsed_globals = _parse_pairs(global_args, '--global')
    try:
        result = _dispatch(ctx, model_name, method, parsed_args, parsed_globals)
        store = _store(ctx)
        for handle in result.data_handles:
            click.echo(json.dumps(store.get(handle).payload, indent=2))
    except ProvisionError as e:
        _fail(e)


@cli.command()
@click.argument('vm_name')
@click.argument('vm_host')
@click.option('--user', default=None, help='SSH user on the VM')
@click.option('--target-ip', default=None, help='Scrape address (default: VM_HOST)')
@click.option('--loki-url', default=None, help='Loki push URL (default: discovered from the hub)')
@click.option('--textfile/--no-textfile', default=True, help='Enable the textfile collector')
@click.pass_context
def onboard(ctx, vm_name, vm_host, user, target_ip, loki_url, textfile):
    """
    Install, configure and register a VM in one go

    VM_NAME: Name used for labels and resource keys
    VM_HOST: SSH address of the VM
    """
    agent_globals = {'sshHost': vm_host, 'sshUser': user}
    try:
        _dispatch(ctx, 'hub', 'discover', {})
        hub = _store(ctx).read('hub', HUB_KEY)
        if not hub['lokiReady']:
            click.echo(click.style('⚠ Loki is not ready; logs will queue until it is', fg='yellow'))
        _dispatch(ctx, 'agent', 'install', {'vmName': vm_name}, agent_globals)
        _dispatch(ctx, 'agent', 'configure',
                  {'vmName': vm_name, 'lokiUrl': loki_url or hub['lokiPushUrl']}, agent_globals)
        if textfile:
            _dispatch(ctx, 'agent', 'enableTextfileCollector', {'vmName': vm_name}, agent_globals)
        _dispatch(ctx, 'hub', 'register', {'vmName': vm_name, 'targetIp': target_ip or vm_host})
    except ProvisionError as e:
        _fail(e)

    click.echo(click.style(f'\n=== {vm_name} onboarded ===\n', fg='green', bold=True))
    click.echo('Prometheus will pick up the target within ~15s')


@cli.command()
@click.argument('kind')
@click.argument('instance_key')
@click.pass_context
def show(ctx, kind, instance_key):
    """Print the latest stored state of a resource"""
    try:
        record = _store(ctx).latest(kind, instance_key)
    except ProvisionError as e:
        _fail(e)
    click.echo(json.dumps(record.payload, indent=2))


@cli.command()
@click.argument('kind')
@click.argument('instance_key')
@click.pass_context
def history(ctx, kind, instance_key):
    """List retained versions of a resource, newest first"""
    try:
        records = _store(ctx).versions(kind, instance_key)
    except ProvisionError as e:
        _fail(e)
    if not records:
        _fail(f'No {kind!r} resource for {instance_key!r}')
    for record in records:
        click.echo(f'{record.version:>4}  {record.timestamp}  {json.dumps(record.payload)}')


@cli.command()
@click.argument('kind')
@click.argument('instance_key')
@click.pass_context
def gc(ctx, kind, instance_key):
    """Reclaim versions beyond the garbage collection horizon"""
    try:
        reclaimed = _store(ctx).collect_garbage(kind, instance_key)
    except ProvisionError as e:
        _fail(e)
    click.echo(f'Reclaimed {reclaimed} version(s)')


if __name__ == '__main__':
    cli()
