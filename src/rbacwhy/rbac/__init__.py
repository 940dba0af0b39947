"""
Kubernetes RBAC permission resolution.

Explains why a subject is allowed (or denied) a verb on a resource by
listing every subject -> binding -> role -> rule chain that grants it.

Usage:
    from rbacwhy.rbac import (
        PermissionRequest,
        RBACResolver,
        classify,
        parse_subject,
    )

    resolver = RBACResolver(source)
    subject = parse_subject("system:serviceaccount:ci:builder")

    result = resolver.resolve_permission(
        subject,
        PermissionRequest(verb="create", resource="pods", subresource="exec", namespace="ci"),
    )
    print(result.allowed, len(result.grants), result.errors)

    risks = classify(resolver.resolve_all_permissions(subject, namespace="ci"))
"""

from rbacwhy.rbac.models import (
    # Enums
    SubjectKind,
    BindingKind,
    RoleKind,
    GrantScope,
    Severity,
    # Models
    Subject,
    PermissionRequest,
    PolicyRule,
    BindingSubject,
    ClusterRoleRef,
    NamespacedRoleRef,
    RoleRef,
    Binding,
    BindingInfo,
    Role,
    RoleInfo,
    PermissionGrant,
    ResolutionError,
    PermissionResult,
    PermissionInventory,
    RiskyPermission,
    # Errors
    RBACWhyError,
    SubjectParseError,
    EmptySubjectError,
    MalformedIdentifierError,
    DataSourceError,
    DataSourceUnavailable,
    ReferencedObjectMissing,
    ResolutionCancelled,
)
from rbacwhy.rbac.subjects import (
    effective_groups,
    implicit_groups,
    parse_subject,
    service_account_username,
)
from rbacwhy.rbac.matcher import (
    api_group_matches,
    binding_matches_subject,
    resource_matches,
    resource_name_matches,
    rule_matches,
    subject_entry_matches,
    subject_entry_matches_with_groups,
    verb_matches,
)
from rbacwhy.rbac.source import (
    BaseRBACDataSource,
    CachingDataSource,
    KubernetesDataSource,
    RBACManifestDataSource,
    RBACMemoryDataSource,
    create_data_source,
    get_data_source,
    reset_data_source,
    set_data_source,
)
from rbacwhy.rbac.resolver import (
    BindingOutcome,
    RBACResolver,
    get_resolver,
    reset_resolver,
    resolve_all_permissions,
    resolve_permission,
    set_resolver,
)
from rbacwhy.rbac.risk import (
    RISK_SIGNATURES,
    RiskSignature,
    classify,
    group_by_severity,
    matches_signature,
)
from rbacwhy.rbac.audit import (
    AuditingResolver,
    RBACAuditEmitter,
)

__all__ = [
    # Enums
    "SubjectKind",
    "BindingKind",
    "RoleKind",
    "GrantScope",
    "Severity",
    # Models
    "Subject",
    "PermissionRequest",
    "PolicyRule",
    "BindingSubject",
    "ClusterRoleRef",
    "NamespacedRoleRef",
    "RoleRef",
    "Binding",
    "BindingInfo",
    "Role",
    "RoleInfo",
    "PermissionGrant",
    "ResolutionError",
    "PermissionResult",
    "PermissionInventory",
    "RiskyPermission",
    # Errors
    "RBACWhyError",
    "SubjectParseError",
    "EmptySubjectError",
    "MalformedIdentifierError",
    "DataSourceError",
    "DataSourceUnavailable",
    "ReferencedObjectMissing",
    "ResolutionCancelled",
    # Subjects
    "parse_subject",
    "implicit_groups",
    "effective_groups",
    "service_account_username",
    # Matcher
    "verb_matches",
    "api_group_matches",
    "resource_matches",
    "resource_name_matches",
    "rule_matches",
    "subject_entry_matches",
    "subject_entry_matches_with_groups",
    "binding_matches_subject",
    # Sources
    "BaseRBACDataSource",
    "KubernetesDataSource",
    "RBACMemoryDataSource",
    "RBACManifestDataSource",
    "CachingDataSource",
    "create_data_source",
    "get_data_source",
    "set_data_source",
    "reset_data_source",
    # Resolver
    "RBACResolver",
    "BindingOutcome",
    "resolve_permission",
    "resolve_all_permissions",
    "get_resolver",
    "set_resolver",
    "reset_resolver",
    # Risk
    "RiskSignature",
    "RISK_SIGNATURES",
    "matches_signature",
    "classify",
    "group_by_severity",
    # Audit
    "RBACAuditEmitter",
    "AuditingResolver",
]
