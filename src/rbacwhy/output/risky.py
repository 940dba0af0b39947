"""Risky-permission report rendering."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

import yaml

from rbacwhy.output.printer import grant_to_dict
from rbacwhy.rbac.models import RiskyPermission
from rbacwhy.rbac.risk import group_by_severity


def render_risky_permissions(risks: Sequence[RiskyPermission]) -> str:
    """Text report, most severe categories first."""
    if not risks:
        return "No risky permissions detected.\n"

    lines: List[str] = [f"Found {len(risks)} risky permission pattern(s):", ""]
    for severity, bucket in group_by_severity(risks).items():
        if not bucket:
            continue
        lines.append(f"{severity.value.upper()}:")
        for risk in bucket:
            lines.append(f"  - {risk.category}")
            lines.append(f"    {risk.description}")
            lines.append("    Granted via:")
            for grant in risk.grants:
                lines.append(
                    f"      - {grant.binding.kind}/{grant.binding.name} -> "
                    f"{grant.role.kind}/{grant.role.name}"
                )
            lines.append("")

    return "\n".join(lines).rstrip("\n") + "\n"


def risks_to_dict(risks: Sequence[RiskyPermission]) -> Dict[str, Any]:
    return {
        "riskyPermissions": [
            {
                "category": risk.category,
                "severity": risk.severity,
                "description": risk.description,
                "grants": [grant_to_dict(g) for g in risk.grants],
            }
            for risk in risks
        ]
    }


def render_risky_structured(risks: Sequence[RiskyPermission], fmt: str) -> str:
    """json or yaml rendering of the risk report."""
    data = risks_to_dict(risks)
    if fmt == "json":
        return json.dumps(data, indent=2) + "\n"
    if fmt == "yaml":
        return yaml.dump(data, default_flow_style=False, sort_keys=False)
    raise ValueError(f"risk report does not support output format: {fmt}")
