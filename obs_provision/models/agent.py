"""
Monitoring agent model: node-exporter and promtail on Alpine (OpenRC) VMs.
"""
import shlex

from pydantic import Field

from obs_provision import promtail
from obs_provision.registry import Arguments, Model, Payload
from obs_provision.steps import Step, WriteFile
from obs_provision.store import ResourceSpec, utc_now

TEXTFILE_DIR = '/var/lib/node_exporter/textfile_collector'
NODE_EXPORTER_CONF = '/etc/conf.d/node-exporter'
METRICS_URL = 'http://localhost:9100/metrics'

# VM names end up in file names and labels
VM_NAME_PATTERN = r'^[A-Za-z0-9][A-Za-z0-9._-]*$'


class AgentGlobals(Arguments):
    ssh_host: str = Field(description="SSH hostname/IP of the target VM")
    ssh_user: str = Field(default='root', description="SSH user")


class InstallArgs(Arguments):
    vm_name: str = Field(pattern=VM_NAME_PATTERN, description="VM name (used for resource naming)")


class ConfigureArgs(Arguments):
    vm_name: str = Field(pattern=VM_NAME_PATTERN, description="VM name (used as host label in promtail)")
    loki_url: str = Field(pattern=r'^https?://\S+$', description="Loki push URL")


class InstallState(Payload):
    node_exporter_running: bool
    promtail_installed: bool
    timestamp: str


class ConfigState(Payload):
    loki_url: str
    promtail_configured: bool
    timestamp: str


class TextfileState(Payload):
    textfile_collector_enabled: bool
    timestamp: str


model = Model(
    type='@user/monitoring/agent',
    version='2026.02.17.1',
    name='agent',
    global_arguments=AgentGlobals,
    resources={
        'install': ResourceSpec('install', InstallState, "Monitoring agent install state"),
        'config': ResourceSpec('config', ConfigState, "Monitoring agent configuration state"),
        'textfile': ResourceSpec('textfile', TextfileState, "Textfile collector setup state"),
    },
)


@model.method('install', InstallArgs, "Install node-exporter and promtail binary on an Alpine VM (no configuration)")
def install(args: InstallArgs, invocation):
    invocation.run([
        Step('enable-community-repo',
             r"sed -i '/^#.*\/community$/s/^#//' /etc/apk/repositories && apk update"),
        Step('install-node-exporter',
             'apk add prometheus-node-exporter && rc-update add node-exporter default && service node-exporter start'),
        Step('verify-node-exporter', f'wget -qO /dev/null {METRICS_URL}'),
        Step('install-promtail', 'apk add loki-promtail loki-promtail-openrc'),
        # Not started: there is no config until configure runs
        Step('enable-promtail', 'rc-update add loki-promtail default'),
    ])
    invocation.write_resource('install', args.vm_name, InstallState(
        node_exporter_running=True,
        promtail_installed=True,
        timestamp=utc_now(),
    ))


@model.method('configure', ConfigureArgs, "Configure promtail to push logs to Loki and start the service")
def configure(args: ConfigureArgs, invocation):
    config_dir = shlex.quote(promtail.CONFIG_PATH.rsplit('/', 1)[0])
    positions_dir = shlex.quote(promtail.POSITIONS_PATH.rsplit('/', 1)[0])
    invocation.run([
        Step('create-directories', f'mkdir -p {config_dir} {positions_dir}'),
        WriteFile(
            name='write-promtail-config',
            path=promtail.CONFIG_PATH,
            content=promtail.render_promtail_config(args.loki_url, args.vm_name),
        ),
        # Leftover from container-based installs
        Step('remove-promtail-container',
             'docker stop promtail 2>/dev/null || true && docker rm promtail 2>/dev/null || true',
             guarded=True),
        # Covers configure without a prior install
        Step('ensure-promtail-installed',
             'apk info -e loki-promtail >/dev/null 2>&1 || apk add loki-promtail loki-promtail-openrc'),
        Step('enable-promtail', 'rc-update add loki-promtail default 2>/dev/null || true', guarded=True),
        Step('restart-promtail', 'service loki-promtail restart 2>/dev/null || service loki-promtail start'),
    ])
    invocation.write_resource('config', args.vm_name, ConfigState(
        loki_url=args.loki_url,
        promtail_configured=True,
        timestamp=utc_now(),
    ))


@model.method('enableTextfileCollector', InstallArgs,
              "Enable node-exporter textfile collector for custom .prom metrics (one-time setup)")
def enable_textfile_collector(args: InstallArgs, invocation):
    collector_args = shlex.quote(f'ARGS="--collector.textfile.directory={TEXTFILE_DIR}"')
    conf = shlex.quote(NODE_EXPORTER_CONF)
    invocation.run([
        Step('create-textfile-directory', f'mkdir -p {shlex.quote(TEXTFILE_DIR)}'),
        Step('set-textfile-directory',
             f"grep -q 'textfile.directory' {conf} 2>/dev/null || echo {collector_args} >> {conf}"),
        Step('restart-node-exporter', 'service node-exporter restart'),
        Step('verify-textfile-collector',
             f"wget -qO- {METRICS_URL} | grep -q 'node_textfile_scrape_error' && echo ok"),
    ])
    invocation.write_resource('textfile', args.vm_name, TextfileState(
        textfile_collector_enabled=True,
        timestamp=utc_now(),
    ))
