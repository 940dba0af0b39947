"""
rbac-why - Explain Kubernetes RBAC decisions.

`kubectl auth can-i` says yes or no. rbac-why says why: every binding,
role and rule that grants a permission, whether it applies cluster-wide
or in one namespace, and which of a subject's permissions are dangerous.

Key Features:
- Every independent grant chain, so each revocation point is visible
- Implicit group membership (system:authenticated, system:serviceaccounts:<ns>)
- Risk analysis over everything a subject can reach
- Text, JSON, YAML, Graphviz DOT and Mermaid output
- Live clusters or offline manifest snapshots

Example usage:
    from rbacwhy import RBACResolver, PermissionRequest, parse_subject
    from rbacwhy.rbac import RBACManifestDataSource

    resolver = RBACResolver(RBACManifestDataSource(["./rbac-dump.yaml"]))
    result = resolver.resolve_permission(
        parse_subject("system:serviceaccount:ci:builder"),
        PermissionRequest(verb="get", resource="secrets", namespace="ci"),
    )
"""

__version__ = "0.1.0"
__all__ = [
    "RBACResolver",
    "PermissionRequest",
    "parse_subject",
    "classify",
    "__version__",
]


# Lazy imports to avoid loading the kubernetes client at import time
def __getattr__(name: str):
    if name == "RBACResolver":
        from rbacwhy.rbac.resolver import RBACResolver
        return RBACResolver
    if name == "PermissionRequest":
        from rbacwhy.rbac.models import PermissionRequest
        return PermissionRequest
    if name == "parse_subject":
        from rbacwhy.rbac.subjects import parse_subject
        return parse_subject
    if name == "classify":
        from rbacwhy.rbac.risk import classify
        return classify
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
