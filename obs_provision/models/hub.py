"""
Monitoring hub model: the host running Loki and Prometheus.
"""
from pydantic import Field

from obs_provision import targets
from obs_provision.models.agent import VM_NAME_PATTERN
from obs_provision.registry import Arguments, Model, Payload
from obs_provision.steps import Step
from obs_provision.store import ResourceSpec, utc_now

HUB_KEY = 'hub'
LOKI_PORT = 3100
PROMETHEUS_PORT = 9090


class HubGlobals(Arguments):
    ssh_host: str = Field(description="SSH hostname/IP of the monitoring hub")
    ssh_user: str = Field(default='keeb', description="SSH user")
    targets_dir: str = Field(pattern=r'^(/[^/\s]+)+/?$', description="Path to Prometheus file_sd_configs targets directory")


class DiscoverArgs(Arguments):
    pass


class RegisterArgs(Arguments):
    vm_name: str = Field(pattern=VM_NAME_PATTERN, description="VM name to register as a Prometheus scrape target")
    target_ip: str = Field(pattern=r'^[0-9A-Za-z.:-]+$', description="IP address of the target VM")


class HubState(Payload):
    loki_push_url: str
    prometheus_url: str
    ssh_host: str
    targets_dir: str
    loki_ready: bool
    prometheus_ready: bool
    timestamp: str


class TargetState(Payload):
    success: bool
    target_file: str
    target_ip: str
    timestamp: str


model = Model(
    type='@user/monitoring/hub',
    version='2026.02.17.1',
    name='hub',
    global_arguments=HubGlobals,
    resources={
        'hub': ResourceSpec('hub', HubState, "Observability stack endpoints"),
        'target': ResourceSpec('target', TargetState, "Prometheus scrape target registration"),
    },
)


def loki_ready(stdout: str) -> bool:
    # Exact text of Loki's /ready body; breaks if Loki changes it
    return stdout.strip().lower() == 'ready'


def prometheus_ready(stdout: str) -> bool:
    return 'Ready' in stdout.strip()


@model.method('discover', DiscoverArgs, "Validate observability stack and write endpoint data")
def discover(args: DiscoverArgs, invocation):
    hub = invocation.global_args
    outcome = invocation.run([
        # Probes report readiness; a failing probe is recorded, not fatal
        Step('check-loki', f'curl -sf http://localhost:{LOKI_PORT}/ready', guarded=True),
        # Prometheus is not exposed on the host
        Step('check-prometheus',
             f'docker exec prometheus wget -qO- http://localhost:{PROMETHEUS_PORT}/-/ready',
             guarded=True),
    ])
    state = HubState(
        loki_push_url=f'http://{targets.host_port(hub.ssh_host, LOKI_PORT)}/loki/api/v1/push',
        prometheus_url=f'http://{targets.host_port(hub.ssh_host, PROMETHEUS_PORT)}',
        ssh_host=hub.ssh_host,
        targets_dir=hub.targets_dir,
        loki_ready=loki_ready(outcome['check-loki'].stdout),
        prometheus_ready=prometheus_ready(outcome['check-prometheus'].stdout),
        timestamp=utc_now(),
    )
    invocation.logger.info(
        "Loki ready: %s, Prometheus ready: %s", state.loki_ready, state.prometheus_ready,
        extra={'context': {'lokiPushUrl': state.loki_push_url, 'prometheusUrl': state.prometheus_url}})
    invocation.write_resource('hub', HUB_KEY, state)


@model.method('register', RegisterArgs, "Register a VM as a Prometheus scrape target via file_sd_configs")
def register(args: RegisterArgs, invocation):
    targets_dir = invocation.global_args.targets_dir
    step = targets.register_target_step(targets_dir, args.vm_name, args.target_ip)
    invocation.run([step])
    invocation.logger.info("Wrote target file %s; Prometheus picks it up within ~15s", step.path)
    invocation.write_resource('target', args.vm_name, TargetState(
        success=True,
        target_file=step.path,
        target_ip=args.target_ip,
        timestamp=utc_now(),
    ))
