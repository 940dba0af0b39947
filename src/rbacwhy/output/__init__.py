"""
Output formats for rbac-why results.

    printer = get_printer("mermaid")
    click.echo(printer.render(result), nl=False)
"""

from typing import Dict, Type

from rbacwhy.output.graph import DotPrinter, MermaidPrinter, escape_dot, escape_mermaid
from rbacwhy.output.printer import (
    BasePrinter,
    JSONPrinter,
    TextPrinter,
    YAMLPrinter,
    format_resource,
    result_to_dict,
)
from rbacwhy.output.risky import (
    render_risky_permissions,
    render_risky_structured,
    risks_to_dict,
)

PRINTERS: Dict[str, Type[BasePrinter]] = {
    "text": TextPrinter,
    "json": JSONPrinter,
    "yaml": YAMLPrinter,
    "dot": DotPrinter,
    "mermaid": MermaidPrinter,
}


def get_printer(fmt: str) -> BasePrinter:
    try:
        return PRINTERS[fmt]()
    except KeyError:
        raise ValueError(f"unknown output format: {fmt}") from None


__all__ = [
    "BasePrinter",
    "TextPrinter",
    "JSONPrinter",
    "YAMLPrinter",
    "DotPrinter",
    "MermaidPrinter",
    "PRINTERS",
    "get_printer",
    "format_resource",
    "result_to_dict",
    "escape_dot",
    "escape_mermaid",
    "render_risky_permissions",
    "render_risky_structured",
    "risks_to_dict",
]
