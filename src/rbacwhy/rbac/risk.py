"""
Risk classification for reachable permissions.

Matches every grant from the all-permissions enumeration against a fixed
catalog of dangerous capability signatures and groups the hits by
category.

Example:
    grants = resolver.resolve_all_permissions(subject, namespace="prod")
    for risk in classify(grants):
        print(risk.severity, risk.category, len(risk.grants))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from rbacwhy.rbac.matcher import API_GROUP_ALL, RESOURCE_ALL, VERB_ALL
from rbacwhy.rbac.models import (
    PermissionGrant,
    PolicyRule,
    RiskyPermission,
    Severity,
)

SEVERITY_ORDER: Tuple[Severity, ...] = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM)


@dataclass(frozen=True)
class RiskSignature:
    """A dangerous capability, described by the rule shapes that grant it."""
    category: str
    severity: Severity
    description: str
    verbs: Tuple[str, ...]
    api_groups: Tuple[str, ...]
    resources: Tuple[str, ...]


RISK_SIGNATURES: Tuple[RiskSignature, ...] = (
    RiskSignature(
        category="secrets-access",
        severity=Severity.CRITICAL,
        description="Access to Secrets can expose sensitive credentials, tokens, and keys",
        verbs=("get", "list", "watch", "*"),
        api_groups=("", "*"),
        resources=("secrets", "*"),
    ),
    RiskSignature(
        category="pod-exec",
        severity=Severity.CRITICAL,
        description="Pod exec allows arbitrary command execution in containers",
        verbs=("create", "*"),
        api_groups=("", "*"),
        resources=("pods/exec", "*"),
    ),
    RiskSignature(
        category="pod-attach",
        severity=Severity.CRITICAL,
        description="Pod attach allows connecting to running containers",
        verbs=("create", "*"),
        api_groups=("", "*"),
        resources=("pods/attach", "*"),
    ),
    RiskSignature(
        category="pod-create",
        severity=Severity.HIGH,
        description="Pod creation can lead to privilege escalation via hostPath, hostPID, etc.",
        verbs=("create", "*"),
        api_groups=("", "*"),
        resources=("pods", "*"),
    ),
    RiskSignature(
        category="impersonate",
        severity=Severity.CRITICAL,
        description="Impersonation allows assuming other user/group identities",
        verbs=("impersonate", "*"),
        api_groups=("", "*"),
        resources=("users", "groups", "serviceaccounts", "*"),
    ),
    RiskSignature(
        category="nodes-proxy",
        severity=Severity.CRITICAL,
        description="Node proxy access can execute commands on nodes via kubelet API",
        verbs=("get", "create", "*"),
        api_groups=("", "*"),
        resources=("nodes/proxy", "*"),
    ),
    RiskSignature(
        category="persistent-volume-create",
        severity=Severity.HIGH,
        description="PV creation with hostPath can access node filesystem",
        verbs=("create", "*"),
        api_groups=("", "*"),
        resources=("persistentvolumes", "*"),
    ),
    RiskSignature(
        category="cluster-admin",
        severity=Severity.CRITICAL,
        description="Wildcard access grants full cluster control (cluster-admin equivalent)",
        verbs=("*",),
        api_groups=("*",),
        resources=("*",),
    ),
    RiskSignature(
        category="role-escalation",
        severity=Severity.CRITICAL,
        description="Ability to create/modify roles can escalate privileges",
        verbs=("create", "update", "patch", "*"),
        api_groups=("rbac.authorization.k8s.io", "*"),
        resources=("roles", "clusterroles", "*"),
    ),
    RiskSignature(
        category="binding-escalation",
        severity=Severity.CRITICAL,
        description="Ability to create/modify bindings can grant any permissions",
        verbs=("create", "update", "patch", "*"),
        api_groups=("rbac.authorization.k8s.io", "*"),
        resources=("rolebindings", "clusterrolebindings", "*"),
    ),
    RiskSignature(
        category="csr-approve",
        severity=Severity.HIGH,
        description="CSR approval can issue certificates for any identity",
        verbs=("approve", "*"),
        api_groups=("certificates.k8s.io", "*"),
        resources=("certificatesigningrequests/approval", "*"),
    ),
    RiskSignature(
        category="token-request",
        severity=Severity.HIGH,
        description="Token request can generate tokens for any service account",
        verbs=("create", "*"),
        api_groups=("", "*"),
        resources=("serviceaccounts/token", "*"),
    ),
)


def _overlaps(
    rule_values: Sequence[str],
    signature_values: Sequence[str],
    wildcard: str,
    signature_wildcard: bool = True,
) -> bool:
    if wildcard in rule_values:
        return True
    if signature_wildcard and wildcard in signature_values:
        return True
    return any(value in signature_values for value in rule_values)


def matches_signature(rule: PolicyRule, signature: RiskSignature) -> bool:
    """
    True when the rule overlaps the signature on verbs, groups and resources.

    On groups and resources a "*" on either side overlaps anything. On
    verbs only the rule's "*" does, so a signature listing "*" verbs
    still needs the rule to grant one of its verbs.
    """
    return (
        _overlaps(rule.verbs, signature.verbs, VERB_ALL, signature_wildcard=False)
        and _overlaps(rule.api_groups, signature.api_groups, API_GROUP_ALL)
        and _overlaps(rule.resources, signature.resources, RESOURCE_ALL)
    )


def classify(
    grants: Iterable[PermissionGrant],
    signatures: Sequence[RiskSignature] = RISK_SIGNATURES,
) -> List[RiskyPermission]:
    """
    Group grants by the risk categories their rules hit.

    Categories appear in the order they are first hit; each category's
    grants keep encounter order. One grant can land in several categories.
    """
    hits: Dict[str, List[PermissionGrant]] = {}
    found: Dict[str, RiskSignature] = {}

    for grant in grants:
        for signature in signatures:
            if not matches_signature(grant.matching_rule, signature):
                continue
            if signature.category not in found:
                found[signature.category] = signature
                hits[signature.category] = []
            hits[signature.category].append(grant)

    return [
        RiskyPermission(
            category=category,
            description=signature.description,
            severity=signature.severity,
            grants=hits[category],
        )
        for category, signature in found.items()
    ]


def group_by_severity(risks: Iterable[RiskyPermission]) -> Dict[Severity, List[RiskyPermission]]:
    """Bucket risks by severity, most severe first, keeping order inside a bucket."""
    grouped: Dict[Severity, List[RiskyPermission]] = {s: [] for s in SEVERITY_ORDER}
    for risk in risks:
        grouped[Severity(risk.severity)].append(risk)
    return grouped
