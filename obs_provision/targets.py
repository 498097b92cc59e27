"""
File-based service discovery targets.

Prometheus polls a directory of JSON files (file_sd_configs, about every
15s). Registering a host means writing <targets_dir>/<instance>.json; no
acknowledgment is awaited and a not-yet-polled file is not an error.
"""
import ipaddress
import json
import posixpath
from typing import Dict, List, Optional

from obs_provision.steps import WriteFile

NODE_EXPORTER_PORT = 9100
NODE_JOB = 'node'


def host_port(host: str, port: int) -> str:
    """
    >>> host_port('10.0.0.5', 9100), host_port('fe80::5', 9100)
    ('10.0.0.5:9100', '[fe80::5]:9100')
    """
    try:
        if ipaddress.ip_address(host).version == 6:
            return f'[{host}]:{port}'
    except ValueError:
        pass
    return f'{host}:{port}'


def target_descriptor(instance: str, ip: str, port: int = NODE_EXPORTER_PORT, labels: Optional[Dict[str, str]] = None) -> List[dict]:
    return [
        {
            'targets': [host_port(ip, port)],
            'labels': {
                'instance': instance,
                'job': NODE_JOB,
                **(labels or {}),
            },
        },
    ]


def render_target_file(instance: str, ip: str, port: int = NODE_EXPORTER_PORT, labels: Optional[Dict[str, str]] = None) -> str:
    """Same arguments always produce byte-identical output"""
    return json.dumps(target_descriptor(instance, ip, port, labels), indent=2) + '\n'


def target_path(targets_dir: str, instance: str) -> str:
    return posixpath.join(targets_dir, f'{instance}.json')


def register_target_step(targets_dir: str, instance: str, ip: str, port: int = NODE_EXPORTER_PORT, labels: Optional[Dict[str, str]] = None) -> WriteFile:
    return WriteFile(
        name='write-target-file',
        path=target_path(targets_dir, instance),
        content=render_target_file(instance, ip, port, labels),
    )
