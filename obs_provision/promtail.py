"""
Promtail configuration rendering.
"""
from typing import Any, Dict

import yaml

CONFIG_PATH = '/etc/loki/promtail-local-config.yaml'
POSITIONS_PATH = '/var/lib/promtail/positions.yaml'
HTTP_LISTEN_PORT = 9080

# job name -> file glob shipped under that job
SCRAPE_JOBS = {
    'syslog': '/var/log/messages',
    'logs': '/var/log/*.log',
}


def promtail_config(loki_url: str, vm_name: str) -> Dict[str, Any]:
    return {
        'server': {
            'http_listen_port': HTTP_LISTEN_PORT,
            'grpc_listen_port': 0,
        },
        'positions': {
            'filename': POSITIONS_PATH,
        },
        'clients': [
            {'url': loki_url},
        ],
        'scrape_configs': [
            {
                'job_name': job,
                'static_configs': [
                    {
                        'targets': ['localhost'],
                        'labels': {
                            'host': vm_name,
                            'job': job,
                            '__path__': path,
                        },
                    },
                ],
            }
            for job, path in SCRAPE_JOBS.items()
        ],
    }


def render_promtail_config(loki_url: str, vm_name: str) -> str:
    """YAML document for /etc/loki/promtail-local-config.yaml"""
    return yaml.safe_dump(promtail_config(loki_url, vm_name), sort_keys=False, default_flow_style=False)
