"""
rbac-why CLI - explain Kubernetes RBAC decisions.

Commands:
    rbac-why can-i    Show every binding -> role -> rule chain behind a permission

Installed both as `rbac-why` and as the kubectl plugin `kubectl-rbac_why`
(so `kubectl rbac-why can-i ...` works).
"""

import click

from .cani import can_i, parse_resource


@click.group()
@click.version_option(package_name="rbac-why")
def main():
    """rbac-why - explain why a Kubernetes permission is granted."""
    pass


main.add_command(can_i)


__all__ = ["main", "can_i", "parse_resource"]
