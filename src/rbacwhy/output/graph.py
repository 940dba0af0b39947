"""
Graph printers: Graphviz DOT and Mermaid.

Both draw subject -> binding -> role -> permission, one binding/role pair
per grant chain, or a single DENIED node.

    rbac-why can-i get secrets --as alice -o dot | dot -Tsvg > why.svg
"""

from __future__ import annotations

from typing import List, Optional

from rbacwhy.identity import ContextInfo
from rbacwhy.output.printer import BasePrinter
from rbacwhy.rbac.models import BindingInfo, PermissionResult, RoleInfo


def escape_dot(text: str) -> str:
    return text.replace('"', '\\"').replace("\n", "\\n")


def escape_mermaid(text: str) -> str:
    for old, new in (("[", "("), ("]", ")"), ("{", "("), ("}", ")"), ('"', "'")):
        text = text.replace(old, new)
    return text


def _dot_label(info: BindingInfo | RoleInfo) -> str:
    label = f"{info.kind}\\n{escape_dot(info.name)}"
    if info.namespace:
        label += f"\\n(ns: {escape_dot(info.namespace)})"
    return label


def _mermaid_label(info: BindingInfo | RoleInfo) -> str:
    label = f"{info.kind}: {info.name}"
    if info.namespace:
        label += f" ns:{info.namespace}"
    return escape_mermaid(label)


class DotPrinter(BasePrinter):
    """Graphviz DOT output."""

    def render(
        self,
        result: PermissionResult,
        context: Optional[ContextInfo] = None,
    ) -> str:
        request = result.request
        lines: List[str] = [
            "digraph rbac {",
            "  rankdir=LR;",
            '  node [shape=box fontname="Helvetica"];',
            '  edge [fontname="Helvetica" fontsize=10];',
            "",
        ]

        if not result.allowed:
            lines.append(
                f'  denied [label="DENIED\\n{escape_dot(str(result.subject))} cannot '
                f'{escape_dot(request.verb)} {escape_dot(request.full_resource)}" '
                "shape=octagon style=filled fillcolor=red fontcolor=white];"
            )
            lines.append("}")
            return "\n".join(lines) + "\n"

        lines.append(
            f'  subject [label="{escape_dot(str(result.subject))}" '
            "shape=ellipse style=filled fillcolor=lightblue];"
        )
        permission = f"{request.verb} {request.full_resource}"
        lines.append(
            f'  permission [label="{escape_dot(permission)}" '
            "shape=diamond style=filled fillcolor=lightgreen];"
        )

        for i, grant in enumerate(result.grants):
            binding_id = f"binding_{i}"
            role_id = f"role_{i}"
            lines.append(
                f'  {binding_id} [label="{_dot_label(grant.binding)}" '
                "style=filled fillcolor=lightyellow];"
            )
            lines.append(
                f'  {role_id} [label="{_dot_label(grant.role)}" '
                "style=filled fillcolor=wheat];"
            )
            lines.append(f'  subject -> {binding_id} [label="binds"];')
            lines.append(f'  {binding_id} -> {role_id} [label="refs"];')
            lines.append(f'  {role_id} -> permission [label="grants"];')

        lines.append("}")
        return "\n".join(lines) + "\n"


class MermaidPrinter(BasePrinter):
    """Mermaid flowchart output."""

    def render(
        self,
        result: PermissionResult,
        context: Optional[ContextInfo] = None,
    ) -> str:
        request = result.request
        lines: List[str] = ["graph LR"]

        if not result.allowed:
            lines.append(
                f"  denied{{{{DENIED: {escape_mermaid(str(result.subject))} cannot "
                f"{escape_mermaid(request.verb)} {escape_mermaid(request.full_resource)}}}}}"
            )
            lines.append("  style denied fill:#f66,stroke:#333,color:#fff")
            return "\n".join(lines) + "\n"

        lines.append(f"  subject([{escape_mermaid(str(result.subject))}])")
        permission = f"{request.verb} {request.full_resource}"
        lines.append(f"  permission{{{{{escape_mermaid(permission)}}}}}")

        for i, grant in enumerate(result.grants):
            lines.append(f"  binding{i}[{_mermaid_label(grant.binding)}]")
            lines.append(f"  role{i}[{_mermaid_label(grant.role)}]")
            lines.append(f"  subject -->|binds| binding{i}")
            lines.append(f"  binding{i} -->|refs| role{i}")
            lines.append(f"  role{i} -->|grants| permission")

        lines.append("")
        lines.append("  style subject fill:#add8e6,stroke:#333")
        lines.append("  style permission fill:#90ee90,stroke:#333")
        for i in range(len(result.grants)):
            lines.append(f"  style binding{i} fill:#fffacd,stroke:#333")
            lines.append(f"  style role{i} fill:#f5deb3,stroke:#333")

        return "\n".join(lines) + "\n"
