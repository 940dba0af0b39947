"""
Pydantic models for Kubernetes RBAC resolution.

Mirrors the subset of the rbac.authorization.k8s.io/v1 API that matters
for answering "why can this subject do that":

Key concepts:
- Subject: Identity being checked (User, Group or ServiceAccount)
- PermissionRequest: The verb/resource being asked about
- PolicyRule: One conjunctive rule inside a Role or ClusterRole
- Binding: RoleBinding or ClusterRoleBinding tying subjects to a role
- PermissionGrant: One subject -> binding -> role -> rule chain
- PermissionResult: Every chain for one request, plus non-fatal errors

All models are frozen snapshots. Field aliases follow the Kubernetes
camelCase names so manifests can be validated directly.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


RBAC_API_GROUP = "rbac.authorization.k8s.io"


class SubjectKind(str, Enum):
    """Kinds of identity a binding can name."""
    USER = "User"
    GROUP = "Group"
    SERVICE_ACCOUNT = "ServiceAccount"


class BindingKind(str, Enum):
    """Binding scopes."""
    ROLE_BINDING = "RoleBinding"
    CLUSTER_ROLE_BINDING = "ClusterRoleBinding"


class RoleKind(str, Enum):
    """Role scopes."""
    ROLE = "Role"
    CLUSTER_ROLE = "ClusterRole"


class GrantScope(str, Enum):
    """Where a grant applies, decided by the binding that authorizes it."""
    NAMESPACE = "namespace"
    CLUSTER_WIDE = "cluster-wide"


class Severity(str, Enum):
    """Risk severity for dangerous permissions."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


_FROZEN = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=True)


# =============================================================================
# Requests
# =============================================================================


class Subject(BaseModel):
    """
    Identity whose access is being evaluated.

    Example:
        sa = Subject(
            kind=SubjectKind.SERVICE_ACCOUNT,
            name="builder",
            namespace="ci",
        )
        user = Subject(kind=SubjectKind.USER, name="alice", groups=["devs"])
    """
    kind: SubjectKind = Field(..., description="User, Group or ServiceAccount")
    name: str = Field(..., description="Subject name")
    namespace: Optional[str] = Field(None, description="ServiceAccount namespace")
    groups: List[str] = Field(
        default_factory=list,
        description="Explicit group memberships (client cert O=, --as-group)",
    )

    model_config = _FROZEN

    @property
    def is_service_account(self) -> bool:
        return self.kind == SubjectKind.SERVICE_ACCOUNT

    @property
    def username(self) -> str:
        """Name as the API server sees it."""
        if self.is_service_account:
            return f"system:serviceaccount:{self.namespace}:{self.name}"
        return self.name

    def same_identity(self, other: "Subject") -> bool:
        """Kind, name and (for ServiceAccounts) namespace equality."""
        if self.kind != other.kind or self.name != other.name:
            return False
        if self.is_service_account:
            return self.namespace == other.namespace
        return True

    def __str__(self) -> str:
        if self.is_service_account:
            return f"ServiceAccount {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


class PermissionRequest(BaseModel):
    """
    A "can-i" question.

    An empty namespace asks about cluster scope only; a non-empty one
    also consults RoleBindings in that namespace.
    """
    verb: str = Field(..., description="API verb (get, list, create, ...)")
    api_group: str = Field("", alias="apiGroup", description="'' is the core group")
    resource: str = Field(..., description="Resource plural, e.g. pods")
    subresource: str = Field("", description="Subresource, e.g. exec")
    resource_name: str = Field("", alias="resourceName", description="Object name")
    namespace: str = Field("", description="Target namespace")

    model_config = _FROZEN

    @property
    def full_resource(self) -> str:
        if self.subresource:
            return f"{self.resource}/{self.subresource}"
        return self.resource

    @property
    def is_namespaced(self) -> bool:
        return bool(self.namespace)


# =============================================================================
# RBAC objects
# =============================================================================


class PolicyRule(BaseModel):
    """
    One rule of a Role or ClusterRole.

    Empty resource_names means the rule covers every object name.
    """
    verbs: List[str] = Field(default_factory=list)
    api_groups: List[str] = Field(default_factory=list, alias="apiGroups")
    resources: List[str] = Field(default_factory=list)
    resource_names: List[str] = Field(default_factory=list, alias="resourceNames")
    non_resource_urls: List[str] = Field(
        default_factory=list,
        alias="nonResourceURLs",
        description="Carried for display; never matched against resource requests",
    )

    model_config = _FROZEN

    @model_validator(mode="before")
    @classmethod
    def _null_lists(cls, data):
        # The API server omits empty lists; manifests may carry explicit nulls.
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def __str__(self) -> str:
        parts = []
        if self.api_groups:
            groups = ", ".join(g if g else '""' for g in self.api_groups)
            parts.append(f"apiGroups=[{groups}]")
        if self.resources:
            parts.append(f"resources=[{', '.join(self.resources)}]")
        if self.non_resource_urls:
            parts.append(f"nonResourceURLs=[{', '.join(self.non_resource_urls)}]")
        if self.verbs:
            parts.append(f"verbs=[{', '.join(self.verbs)}]")
        if self.resource_names:
            parts.append(f"resourceNames=[{', '.join(self.resource_names)}]")
        return ", ".join(parts)


class BindingSubject(BaseModel):
    """An entry in a binding's subjects list."""
    kind: str = Field(..., description="User, Group or ServiceAccount")
    name: str
    namespace: Optional[str] = None
    api_group: Optional[str] = Field(None, alias="apiGroup")

    model_config = _FROZEN


class ClusterRoleRef(BaseModel):
    """Reference to a ClusterRole by name."""
    kind: Literal["ClusterRole"] = "ClusterRole"
    name: str
    api_group: str = Field(RBAC_API_GROUP, alias="apiGroup")

    model_config = _FROZEN


class NamespacedRoleRef(BaseModel):
    """Reference to a Role, resolved in the binding's namespace."""
    kind: Literal["Role"] = "Role"
    name: str
    namespace: str = ""
    api_group: str = Field(RBAC_API_GROUP, alias="apiGroup")

    model_config = _FROZEN


RoleRef = Annotated[
    Union[ClusterRoleRef, NamespacedRoleRef],
    Field(discriminator="kind"),
]


class BindingInfo(BaseModel):
    """Identity of a binding, as reported in a grant."""
    kind: BindingKind
    name: str
    namespace: Optional[str] = None

    model_config = _FROZEN

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


class RoleInfo(BaseModel):
    """Identity of a role, as reported in a grant."""
    kind: RoleKind
    name: str
    namespace: Optional[str] = None

    model_config = _FROZEN

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


class Binding(BaseModel):
    """
    A RoleBinding or ClusterRoleBinding.

    A ClusterRoleBinding may only reference a ClusterRole. A RoleBinding's
    Role reference takes the binding's namespace.
    """
    kind: BindingKind
    name: str
    namespace: Optional[str] = None
    subjects: List[BindingSubject] = Field(default_factory=list)
    role_ref: RoleRef = Field(..., alias="roleRef")

    model_config = _FROZEN

    @model_validator(mode="before")
    @classmethod
    def _attach_role_namespace(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("subjects") is None:
            data.pop("subjects", None)
        key = "roleRef" if "roleRef" in data else "role_ref"
        ref = data.get(key)
        namespace = data.get("namespace") or ""
        if isinstance(ref, dict) and ref.get("kind") == RoleKind.ROLE.value:
            if not ref.get("namespace"):
                data[key] = {**ref, "namespace": namespace}
        elif isinstance(ref, NamespacedRoleRef) and not ref.namespace:
            data[key] = ref.model_copy(update={"namespace": namespace})
        return data

    @model_validator(mode="after")
    def _check_role_ref(self) -> "Binding":
        if (
            self.kind == BindingKind.CLUSTER_ROLE_BINDING
            and not isinstance(self.role_ref, ClusterRoleRef)
        ):
            raise ValueError(
                f"ClusterRoleBinding {self.name} must reference a ClusterRole"
            )
        return self

    @property
    def scope(self) -> GrantScope:
        if self.kind == BindingKind.CLUSTER_ROLE_BINDING:
            return GrantScope.CLUSTER_WIDE
        return GrantScope.NAMESPACE

    def info(self) -> BindingInfo:
        return BindingInfo(kind=self.kind, name=self.name, namespace=self.namespace)


class Role(BaseModel):
    """A Role or ClusterRole with its rules."""
    kind: RoleKind
    name: str
    namespace: Optional[str] = None
    rules: List[PolicyRule] = Field(default_factory=list)

    model_config = _FROZEN

    @model_validator(mode="before")
    @classmethod
    def _null_rules(cls, data):
        if isinstance(data, dict) and data.get("rules") is None:
            data = {k: v for k, v in data.items() if k != "rules"}
        return data

    def info(self) -> RoleInfo:
        return RoleInfo(kind=self.kind, name=self.name, namespace=self.namespace)


# =============================================================================
# Results
# =============================================================================


class PermissionGrant(BaseModel):
    """
    One independently revocable justification for a permission.

    Scope is cluster-wide only when the binding is a ClusterRoleBinding,
    even if a RoleBinding points at a ClusterRole.
    """
    binding: BindingInfo
    role: RoleInfo
    matching_rule: PolicyRule = Field(..., alias="matchingRule")
    scope: GrantScope

    model_config = _FROZEN


class ResolutionError(BaseModel):
    """A binding whose referenced role could not be read."""
    binding: BindingInfo
    role_ref_kind: RoleKind
    role_ref_name: str
    namespace: Optional[str] = None
    message: str

    model_config = _FROZEN

    def __str__(self) -> str:
        return self.message


class PermissionResult(BaseModel):
    """
    Outcome of one resolution.

    `allowed` is true exactly when at least one grant exists. An empty
    result with errors means "denied with partial visibility".

    Example:
        result = resolver.resolve_permission(subject, request)
        if not result.allowed and result.errors:
            print("could not read every referenced role")
    """
    request: PermissionRequest
    subject: Subject
    allowed: bool
    grants: List[PermissionGrant] = Field(default_factory=list)
    errors: List[ResolutionError] = Field(default_factory=list)

    model_config = _FROZEN

    @model_validator(mode="after")
    def _check_allowed(self) -> "PermissionResult":
        if self.allowed != bool(self.grants):
            raise ValueError("allowed must be true exactly when grants exist")
        return self

    @classmethod
    def build(
        cls,
        subject: Subject,
        request: PermissionRequest,
        grants: List[PermissionGrant],
        errors: List[ResolutionError],
    ) -> "PermissionResult":
        return cls(
            subject=subject,
            request=request,
            allowed=len(grants) > 0,
            grants=list(grants),
            errors=list(errors),
        )


class PermissionInventory(BaseModel):
    """Every rule reachable by a subject, with skipped-role diagnostics."""
    subject: Subject
    namespace: str = ""
    grants: List[PermissionGrant] = Field(default_factory=list)
    errors: List[ResolutionError] = Field(default_factory=list)

    model_config = _FROZEN


class RiskyPermission(BaseModel):
    """All grants that hit one risk category."""
    category: str
    description: str
    severity: Severity
    grants: List[PermissionGrant] = Field(default_factory=list)

    model_config = _FROZEN


# =============================================================================
# Errors
# =============================================================================


class RBACWhyError(Exception):
    """Base class for rbac-why errors."""


class SubjectParseError(RBACWhyError, ValueError):
    """Subject identifier could not be parsed."""


class EmptySubjectError(SubjectParseError):
    """Raised for an empty subject identifier."""

    def __init__(self):
        super().__init__("subject cannot be empty")


class MalformedIdentifierError(SubjectParseError):
    """Raised when a reserved identifier has the wrong shape."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        super().__init__(f"invalid subject {identifier!r}: {reason}")


class DataSourceError(RBACWhyError):
    """Base class for data source failures."""


class DataSourceUnavailable(DataSourceError):
    """
    A list call failed (network, authorization, cluster error).

    Fatal when a listing fails. A failed role lookup is only recorded.
    """


class ReferencedObjectMissing(DataSourceError):
    """
    A binding's referenced role could not be fetched.

    Non-fatal: recorded on the result and the binding contributes nothing.
    """

    def __init__(
        self,
        kind: RoleKind,
        name: str,
        namespace: Optional[str] = None,
        reason: str = "not found",
    ):
        self.kind = RoleKind(kind)
        self.name = name
        self.namespace = namespace
        self.reason = reason
        where = f" in namespace {namespace}" if namespace else ""
        super().__init__(f"{self.kind.value} {name}{where}: {reason}")


class ResolutionCancelled(DataSourceError):
    """Resolution was cancelled or hit its deadline."""
