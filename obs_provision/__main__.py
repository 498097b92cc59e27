"""
Allow running as a module: python -m obs_provision
"""
from obs_provision.cli import cli

if __name__ == '__main__':
    cli()
