"""
Rule matching predicates.

Every function here is pure and never raises. A rule that is malformed
on some axis simply fails to match on it.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from rbacwhy.rbac.models import (
    Binding,
    BindingSubject,
    PermissionRequest,
    PolicyRule,
    Subject,
    SubjectKind,
)

VERB_ALL = "*"
API_GROUP_ALL = "*"
RESOURCE_ALL = "*"


def verb_matches(rule_verbs: Sequence[str], verb: str) -> bool:
    return VERB_ALL in rule_verbs or verb in rule_verbs


def api_group_matches(rule_groups: Sequence[str], group: str) -> bool:
    # "" is the core group, matched by equality like any other group.
    return API_GROUP_ALL in rule_groups or group in rule_groups


def resource_matches(
    rule_resources: Sequence[str],
    resource: str,
    subresource: str = "",
) -> bool:
    """
    Match a resource and optional subresource against rule entries.

    "pods/*" covers every pods subresource but never bare "pods";
    "pods" covers bare "pods" but no subresource.
    """
    full = f"{resource}/{subresource}" if subresource else resource
    for entry in rule_resources:
        if entry == RESOURCE_ALL or entry == full:
            return True
        if subresource and entry == f"{resource}/*":
            return True
        if not subresource and entry == resource:
            return True
    return False


def resource_name_matches(rule_names: Sequence[str], name: str) -> bool:
    return name in rule_names


def rule_matches(rule: PolicyRule, request: PermissionRequest) -> bool:
    """
    True when the rule grants the request.

    A rule restricted to resource names still matches a request that names
    no object: the question is whether the capability exists at all.
    """
    if not verb_matches(rule.verbs, request.verb):
        return False
    if not api_group_matches(rule.api_groups, request.api_group):
        return False
    if not resource_matches(rule.resources, request.resource, request.subresource):
        return False
    if rule.resource_names and request.resource_name:
        return resource_name_matches(rule.resource_names, request.resource_name)
    return True


def subject_entry_matches(entry: BindingSubject, subject: Subject) -> bool:
    if entry.kind != subject.kind or entry.name != subject.name:
        return False
    if subject.kind == SubjectKind.SERVICE_ACCOUNT:
        return entry.namespace == subject.namespace
    return True


def subject_entry_matches_with_groups(
    entry: BindingSubject,
    subject: Subject,
    groups: Iterable[str],
) -> bool:
    if subject_entry_matches(entry, subject):
        return True
    return entry.kind == SubjectKind.GROUP and entry.name in set(groups)


def binding_matches_subject(
    binding: Binding,
    subject: Subject,
    groups: Iterable[str],
) -> bool:
    """True if any subject entry of the binding names this subject."""
    groups = set(groups)
    return any(
        subject_entry_matches_with_groups(entry, subject, groups)
        for entry in binding.subjects
    )
