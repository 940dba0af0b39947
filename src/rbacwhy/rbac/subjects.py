"""
Subject parsing and implicit group membership.

Identifier forms accepted by parse_subject:
    system:serviceaccount:<namespace>:<name>   -> ServiceAccount
    system:<anything else>                     -> Group
    <anything else>                            -> User
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from rbacwhy.rbac.models import (
    EmptySubjectError,
    MalformedIdentifierError,
    Subject,
    SubjectKind,
)

SERVICE_ACCOUNT_PREFIX = "system:serviceaccount:"
SYSTEM_PREFIX = "system:"

ALL_AUTHENTICATED = "system:authenticated"
ALL_SERVICE_ACCOUNTS = "system:serviceaccounts"


def service_account_username(namespace: str, name: str) -> str:
    """Build the reserved username for a ServiceAccount."""
    return f"{SERVICE_ACCOUNT_PREFIX}{namespace}:{name}"


def parse_subject(identifier: str, groups: Optional[Iterable[str]] = None) -> Subject:
    """
    Parse a subject identifier as passed to --as.

    Args:
        identifier: Username, group name or ServiceAccount identifier
        groups: Explicit group memberships to attach

    Raises:
        EmptySubjectError: identifier is empty
        MalformedIdentifierError: ServiceAccount form without exactly
            namespace and name fields
    """
    if not identifier:
        raise EmptySubjectError()

    explicit = list(groups or [])

    if identifier.startswith(SERVICE_ACCOUNT_PREFIX):
        parts = identifier.split(":")
        if len(parts) != 4:
            raise MalformedIdentifierError(
                identifier,
                "expected system:serviceaccount:<namespace>:<name>",
            )
        namespace, name = parts[2], parts[3]
        return Subject(
            kind=SubjectKind.SERVICE_ACCOUNT,
            name=name,
            namespace=namespace,
            groups=explicit,
        )

    if identifier.startswith(SYSTEM_PREFIX):
        return Subject(kind=SubjectKind.GROUP, name=identifier, groups=explicit)

    return Subject(kind=SubjectKind.USER, name=identifier, groups=explicit)


def implicit_groups(subject: Subject) -> List[str]:
    """Groups every request from this subject carries without being configured."""
    groups = [ALL_AUTHENTICATED]
    if subject.is_service_account:
        groups.append(ALL_SERVICE_ACCOUNTS)
        groups.append(f"{ALL_SERVICE_ACCOUNTS}:{subject.namespace}")
    return groups


def effective_groups(subject: Subject) -> List[str]:
    """Explicit groups followed by implicit groups, first occurrence wins."""
    seen = set()
    ordered = []
    for group in list(subject.groups) + implicit_groups(subject):
        if group not in seen:
            seen.add(group)
            ordered.append(group)
    return ordered
