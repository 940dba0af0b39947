"""
RBAC data sources.

Read-only accessors over a point-in-time snapshot of RBAC objects.
The resolver only ever talks to BaseRBACDataSource:

    list_cluster_role_bindings()      list failure -> DataSourceUnavailable
    list_role_bindings(namespace)     list failure -> DataSourceUnavailable
    get_cluster_role(name)            get failure  -> ReferencedObjectMissing
    get_role(namespace, name)         get failure  -> ReferencedObjectMissing

Backends:
- KubernetesDataSource: live cluster via the kubernetes client
- RBACMemoryDataSource: in-memory objects (tests, embedding)
- RBACManifestDataSource: YAML/JSON manifests from disk
- CachingDataSource: TTL cache in front of any of the above
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import urllib3
import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from rbacwhy.rbac.models import (
    Binding,
    BindingKind,
    ClusterRoleRef,
    DataSourceUnavailable,
    ReferencedObjectMissing,
    ResolutionCancelled,
    Role,
    RoleKind,
    RoleRef,
)

logger = logging.getLogger(__name__)

SA_TOKEN_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")
SA_NAMESPACE_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")


def detect_kubernetes() -> bool:
    """
    Detect if running inside a Kubernetes cluster.

    Checks for service account token mount.
    """
    return SA_TOKEN_PATH.exists()


def get_current_namespace() -> str:
    """
    Get the namespace this process runs in.

    Reads from mounted service account namespace file.
    Falls back to POD_NAMESPACE, then 'default'.
    """
    if SA_NAMESPACE_PATH.exists():
        return SA_NAMESPACE_PATH.read_text().strip()
    return os.environ.get("POD_NAMESPACE", "default")


# =============================================================================
# Manifest conversion
# =============================================================================


def binding_from_manifest(doc: Dict[str, Any], kind: Optional[str] = None) -> Binding:
    """
    Build a Binding from a (Cluster)RoleBinding manifest dict.

    `kind` overrides the document's own kind, for API list items that
    come back without one.
    """
    metadata = doc.get("metadata") or {}
    return Binding.model_validate({
        "kind": kind or doc.get("kind"),
        "name": metadata.get("name"),
        "namespace": metadata.get("namespace"),
        "subjects": doc.get("subjects"),
        "roleRef": doc.get("roleRef"),
    })


def role_from_manifest(doc: Dict[str, Any], kind: Optional[str] = None) -> Role:
    """Build a Role from a Role or ClusterRole manifest dict."""
    metadata = doc.get("metadata") or {}
    return Role.model_validate({
        "kind": kind or doc.get("kind"),
        "name": metadata.get("name"),
        "namespace": metadata.get("namespace"),
        "rules": doc.get("rules"),
    })


# =============================================================================
# Base
# =============================================================================


class BaseRBACDataSource(ABC):
    """Abstract base class for RBAC data sources. Sources never write."""

    @abstractmethod
    def list_cluster_role_bindings(self) -> List[Binding]:
        """List every ClusterRoleBinding."""
        pass

    @abstractmethod
    def list_role_bindings(self, namespace: str) -> List[Binding]:
        """List RoleBindings in one namespace."""
        pass

    @abstractmethod
    def get_cluster_role(self, name: str) -> Role:
        """Get a ClusterRole by name."""
        pass

    @abstractmethod
    def get_role(self, namespace: str, name: str) -> Role:
        """Get a Role by namespace and name."""
        pass

    def get_referenced_role(self, role_ref: RoleRef) -> Role:
        """Fetch whatever a binding's roleRef points at."""
        if isinstance(role_ref, ClusterRoleRef):
            return self.get_cluster_role(role_ref.name)
        return self.get_role(role_ref.namespace, role_ref.name)


# =============================================================================
# Kubernetes
# =============================================================================


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, urllib3.exceptions.TimeoutError):
        return True
    reason = getattr(exc, "reason", None)
    return isinstance(reason, urllib3.exceptions.TimeoutError)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, ApiException):
        return f"{exc.status} {exc.reason}"
    return str(exc)


class KubernetesDataSource(BaseRBACDataSource):
    """
    Reads RBAC objects from a live cluster.

    Uses the caller's own credentials; the subject being checked is never
    impersonated. Every call carries a request timeout.

    Example:
        source = KubernetesDataSource(context="prod", request_timeout=10)
        bindings = source.list_cluster_role_bindings()
    """

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        request_timeout: Optional[float] = 30.0,
        rbac_api: Optional[client.RbacAuthorizationV1Api] = None,
    ):
        self.request_timeout = request_timeout
        if rbac_api is not None:
            self.api_client = rbac_api.api_client
            self.rbac_api = rbac_api
        else:
            self.api_client = self._build_api_client(kubeconfig, context)
            self.rbac_api = client.RbacAuthorizationV1Api(self.api_client)
        logger.debug(
            f"KubernetesDataSource initialized (context={context or 'current'})"
        )

    @staticmethod
    def _build_api_client(
        kubeconfig: Optional[str],
        context: Optional[str],
    ) -> client.ApiClient:
        try:
            if kubeconfig or context or not detect_kubernetes():
                return config.new_client_from_config(
                    config_file=kubeconfig, context=context
                )
            configuration = client.Configuration()
            config.load_incluster_config(client_configuration=configuration)
            return client.ApiClient(configuration)
        except (config.ConfigException, OSError) as e:
            raise DataSourceUnavailable(
                f"failed to load Kubernetes configuration: {e}"
            ) from e

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    def _list(self, what: str, call: Callable[..., Any], *args: Any) -> List[Any]:
        try:
            response = call(*args, _request_timeout=self.request_timeout)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            if _is_timeout(e):
                raise ResolutionCancelled(f"timed out listing {what}") from e
            raise DataSourceUnavailable(
                f"failed to list {what}: {_describe(e)}"
            ) from e
        return response.items or []

    def _get(
        self,
        kind: RoleKind,
        name: str,
        namespace: Optional[str],
        call: Callable[..., Any],
        *args: Any,
    ) -> Any:
        try:
            return call(*args, _request_timeout=self.request_timeout)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            if _is_timeout(e):
                raise ResolutionCancelled(
                    f"timed out reading {kind.value} {name}"
                ) from e
            raise ReferencedObjectMissing(
                kind, name, namespace, reason=_describe(e)
            ) from e

    def list_cluster_role_bindings(self) -> List[Binding]:
        items = self._list(
            "cluster role bindings", self.rbac_api.list_cluster_role_binding
        )
        return [
            binding_from_manifest(self._to_dict(item), BindingKind.CLUSTER_ROLE_BINDING.value)
            for item in items
        ]

    def list_role_bindings(self, namespace: str) -> List[Binding]:
        items = self._list(
            f"role bindings in namespace {namespace}",
            self.rbac_api.list_namespaced_role_binding,
            namespace,
        )
        return [
            binding_from_manifest(self._to_dict(item), BindingKind.ROLE_BINDING.value)
            for item in items
        ]

    def get_cluster_role(self, name: str) -> Role:
        obj = self._get(
            RoleKind.CLUSTER_ROLE, name, None,
            self.rbac_api.read_cluster_role, name,
        )
        return role_from_manifest(self._to_dict(obj), RoleKind.CLUSTER_ROLE.value)

    def get_role(self, namespace: str, name: str) -> Role:
        obj = self._get(
            RoleKind.ROLE, name, namespace,
            self.rbac_api.read_namespaced_role, name, namespace,
        )
        return role_from_manifest(self._to_dict(obj), RoleKind.ROLE.value)


# =============================================================================
# In-memory
# =============================================================================


class RBACMemoryDataSource(BaseRBACDataSource):
    """
    In-memory RBAC snapshot.

    Objects are returned in insertion order. Setting one of the *_error
    attributes makes the matching call raise that exception instead,
    for exercising failure paths.

    Example:
        source = RBACMemoryDataSource()
        source.add(cluster_role)
        source.add(cluster_role_binding)
    """

    def __init__(self, objects: Optional[Iterable[Union[Binding, Role]]] = None):
        self._cluster_role_bindings: List[Binding] = []
        self._role_bindings: Dict[str, List[Binding]] = {}
        self._cluster_roles: Dict[str, Role] = {}
        self._roles: Dict[Tuple[str, str], Role] = {}

        self.list_cluster_role_bindings_error: Optional[Exception] = None
        self.list_role_bindings_error: Optional[Exception] = None
        self.get_cluster_role_error: Optional[Exception] = None
        self.get_role_error: Optional[Exception] = None

        for obj in objects or []:
            self.add(obj)

    def add(self, obj: Union[Binding, Role]) -> None:
        """Add a binding or role to the snapshot."""
        if isinstance(obj, Binding):
            self.add_binding(obj)
        elif isinstance(obj, Role):
            self.add_role(obj)
        else:
            raise TypeError(f"Cannot add {type(obj).__name__} to RBAC snapshot")

    def add_binding(self, binding: Binding) -> None:
        if binding.kind == BindingKind.CLUSTER_ROLE_BINDING:
            self._cluster_role_bindings.append(binding)
        else:
            self._role_bindings.setdefault(binding.namespace or "", []).append(binding)

    def add_role(self, role: Role) -> None:
        if role.kind == RoleKind.CLUSTER_ROLE:
            self._cluster_roles[role.name] = role
        else:
            self._roles[(role.namespace or "", role.name)] = role

    def list_cluster_role_bindings(self) -> List[Binding]:
        if self.list_cluster_role_bindings_error is not None:
            raise self.list_cluster_role_bindings_error
        return list(self._cluster_role_bindings)

    def list_role_bindings(self, namespace: str) -> List[Binding]:
        if self.list_role_bindings_error is not None:
            raise self.list_role_bindings_error
        return list(self._role_bindings.get(namespace, []))

    def get_cluster_role(self, name: str) -> Role:
        if self.get_cluster_role_error is not None:
            raise self.get_cluster_role_error
        role = self._cluster_roles.get(name)
        if role is None:
            raise ReferencedObjectMissing(RoleKind.CLUSTER_ROLE, name)
        return role

    def get_role(self, namespace: str, name: str) -> Role:
        if self.get_role_error is not None:
            raise self.get_role_error
        role = self._roles.get((namespace, name))
        if role is None:
            raise ReferencedObjectMissing(RoleKind.ROLE, name, namespace)
        return role


class RBACManifestDataSource(RBACMemoryDataSource):
    """
    Offline snapshot loaded from manifest files.

    Accepts single files or directories of *.yaml / *.yml / *.json, with
    multi-document YAML and `kind: List` documents (as written by
    `kubectl get clusterroles,clusterrolebindings,roles,rolebindings -A -o yaml`).
    Non-RBAC kinds are ignored.
    """

    SUFFIXES = (".yaml", ".yml", ".json")
    BINDING_KINDS = {k.value for k in BindingKind}
    ROLE_KINDS = {k.value for k in RoleKind}

    def __init__(self, paths: Iterable[Union[str, Path]]):
        super().__init__()
        self.paths = [Path(p) for p in paths]
        for path in self.paths:
            self.load(path)

    def load(self, path: Path) -> None:
        """Load a file, or every manifest file under a directory."""
        if path.is_dir():
            for child in sorted(path.rglob("*")):
                if child.is_file() and child.suffix in self.SUFFIXES:
                    self._load_file(child)
        else:
            self._load_file(path)

    def _load_file(self, path: Path) -> None:
        try:
            with open(path) as f:
                documents = list(yaml.safe_load_all(f))
        except (OSError, yaml.YAMLError) as e:
            raise DataSourceUnavailable(f"failed to read manifests from {path}: {e}") from e

        for doc in documents:
            self.add_document(doc, source=str(path))
        logger.debug(f"Loaded RBAC manifests from {path}")

    def add_document(self, doc: Any, source: str = "<memory>") -> None:
        """Add one manifest document (or List of documents)."""
        if not isinstance(doc, dict):
            return
        kind = doc.get("kind") or ""
        if kind.endswith("List") and "items" in doc:
            item_kind = kind[: -len("List")] or None
            for item in doc.get("items") or []:
                if item_kind and isinstance(item, dict) and not item.get("kind"):
                    item = {**item, "kind": item_kind}
                self.add_document(item, source=source)
            return

        try:
            if kind in self.BINDING_KINDS:
                self.add_binding(binding_from_manifest(doc))
            elif kind in self.ROLE_KINDS:
                self.add_role(role_from_manifest(doc))
        except ValidationError as e:
            name = (doc.get("metadata") or {}).get("name", "?")
            logger.error(f"Skipping invalid {kind} {name} from {source}: {e}")


# =============================================================================
# Caching
# =============================================================================


class CachingDataSource(BaseRBACDataSource):
    """
    TTL cache in front of another data source.

    Whole listings are cached, so one resolution always works from a
    single listing per call. Failures are never cached.
    """

    def __init__(self, source: BaseRBACDataSource, ttl_seconds: int = 30):
        self.source = source
        self.ttl = timedelta(seconds=ttl_seconds)
        self._cache: Dict[Tuple[str, ...], Tuple[datetime, Any]] = {}
        self._lock = threading.Lock()

    def _prune(self, now: datetime) -> None:
        # Caller holds the lock.
        expired = [
            key for key, (cached_time, _) in self._cache.items()
            if now - cached_time >= self.ttl
        ]
        for key in expired:
            del self._cache[key]

    def _cached(self, key: Tuple[str, ...], loader: Callable[[], Any]) -> Any:
        with self._lock:
            self._prune(datetime.now(timezone.utc))
            if key in self._cache:
                return self._cache[key][1]

        value = loader()

        with self._lock:
            self._cache[key] = (datetime.now(timezone.utc), value)
        return value

    def clear_cache(self) -> None:
        """Drop every cached listing and role."""
        with self._lock:
            self._cache.clear()

    def list_cluster_role_bindings(self) -> List[Binding]:
        return list(self._cached(("crb",), self.source.list_cluster_role_bindings))

    def list_role_bindings(self, namespace: str) -> List[Binding]:
        return list(self._cached(
            ("rb", namespace), lambda: self.source.list_role_bindings(namespace)
        ))

    def get_cluster_role(self, name: str) -> Role:
        return self._cached(("cr", name), lambda: self.source.get_cluster_role(name))

    def get_role(self, namespace: str, name: str) -> Role:
        return self._cached(
            ("r", namespace, name), lambda: self.source.get_role(namespace, name)
        )


# =============================================================================
# Default source
# =============================================================================

_default_source: Optional[BaseRBACDataSource] = None


def create_data_source(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    manifests: Optional[Iterable[Union[str, Path]]] = None,
) -> BaseRBACDataSource:
    """
    Build a data source from configuration.

    Manifests win over a live cluster when given. A positive
    cache_ttl_seconds wraps the result in a CachingDataSource.
    """
    from rbacwhy.config import get_config

    cfg = get_config()
    manifests = list(manifests or [])

    if manifests:
        source: BaseRBACDataSource = RBACManifestDataSource(manifests)
    else:
        source = KubernetesDataSource(
            kubeconfig=kubeconfig or cfg.kubeconfig,
            context=context or cfg.context,
            request_timeout=cfg.request_timeout_seconds,
        )

    if cfg.cache_ttl_seconds > 0:
        source = CachingDataSource(source, ttl_seconds=cfg.cache_ttl_seconds)
    return source


def get_data_source() -> BaseRBACDataSource:
    """Get the default data source, building it from configuration."""
    global _default_source

    if _default_source is None:
        _default_source = create_data_source()

    return _default_source


def set_data_source(source: BaseRBACDataSource) -> None:
    """Set the default data source (for testing or embedding)."""
    global _default_source
    _default_source = source


def reset_data_source() -> None:
    """Reset the default data source (for testing)."""
    global _default_source
    _default_source = None
