"""
Pytest configuration and fixtures for rbac-why tests.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Iterable, List, Optional

import pytest

from rbacwhy.rbac import (
    Binding,
    PolicyRule,
    RBACMemoryDataSource,
    RBACResolver,
    Role,
)


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate each test from RBACWHY_* / KUBECONFIG settings and singletons."""
    from rbacwhy.config import reset_config
    from rbacwhy.rbac.resolver import reset_resolver
    from rbacwhy.rbac.source import reset_data_source

    for key in list(os.environ):
        if key.startswith("RBACWHY_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("KUBECONFIG", str(tmp_path / "no-such-kubeconfig"))
    # pydantic-settings reads .env from the working directory
    monkeypatch.chdir(tmp_path)

    reset_config()
    reset_resolver()
    reset_data_source()
    yield
    reset_config()
    reset_resolver()
    reset_data_source()


# ============================================================================
# RBAC Builders
# ============================================================================


def make_rule(
    verbs: Iterable[str],
    resources: Iterable[str],
    api_groups: Iterable[str] = ("",),
    resource_names: Iterable[str] = (),
) -> PolicyRule:
    return PolicyRule(
        verbs=list(verbs),
        api_groups=list(api_groups),
        resources=list(resources),
        resource_names=list(resource_names),
    )


def user_entry(name: str) -> Dict[str, Any]:
    return {"kind": "User", "name": name, "apiGroup": "rbac.authorization.k8s.io"}


def group_entry(name: str) -> Dict[str, Any]:
    return {"kind": "Group", "name": name, "apiGroup": "rbac.authorization.k8s.io"}


def service_account_entry(namespace: str, name: str) -> Dict[str, Any]:
    return {"kind": "ServiceAccount", "name": name, "namespace": namespace}


class RecordingDataSource(RBACMemoryDataSource):
    """Memory source that records every call, in order."""

    def __init__(self, objects: Optional[Iterable[Any]] = None):
        super().__init__(objects)
        self.calls: List[tuple] = []

    def list_cluster_role_bindings(self):
        self.calls.append(("list_cluster_role_bindings",))
        return super().list_cluster_role_bindings()

    def list_role_bindings(self, namespace):
        self.calls.append(("list_role_bindings", namespace))
        return super().list_role_bindings(namespace)

    def get_cluster_role(self, name):
        self.calls.append(("get_cluster_role", name))
        return super().get_cluster_role(name)

    def get_role(self, namespace, name):
        self.calls.append(("get_role", namespace, name))
        return super().get_role(namespace, name)


class RBACBuilder:
    """Fluent helper for populating an in-memory RBAC snapshot."""

    rule = staticmethod(make_rule)
    user = staticmethod(user_entry)
    group = staticmethod(group_entry)
    service_account = staticmethod(service_account_entry)

    def __init__(self):
        self.source = RecordingDataSource()

    def cluster_role(self, name: str, *rules: PolicyRule) -> "RBACBuilder":
        self.source.add(Role(kind="ClusterRole", name=name, rules=list(rules)))
        return self

    def role(self, namespace: str, name: str, *rules: PolicyRule) -> "RBACBuilder":
        self.source.add(
            Role(kind="Role", name=name, namespace=namespace, rules=list(rules))
        )
        return self

    def cluster_role_binding(
        self, name: str, role_name: str, *subjects: Dict[str, Any]
    ) -> "RBACBuilder":
        self.source.add(Binding.model_validate({
            "kind": "ClusterRoleBinding",
            "name": name,
            "subjects": list(subjects),
            "roleRef": {"kind": "ClusterRole", "name": role_name},
        }))
        return self

    def role_binding(
        self,
        namespace: str,
        name: str,
        role_ref_kind: str,
        role_ref_name: str,
        *subjects: Dict[str, Any],
    ) -> "RBACBuilder":
        self.source.add(Binding.model_validate({
            "kind": "RoleBinding",
            "name": name,
            "namespace": namespace,
            "subjects": list(subjects),
            "roleRef": {"kind": role_ref_kind, "name": role_ref_name},
        }))
        return self

    def resolver(self) -> RBACResolver:
        return RBACResolver(self.source)


@pytest.fixture
def rbac() -> RBACBuilder:
    """Empty RBAC snapshot builder (records data source calls)."""
    return RBACBuilder()


# ============================================================================
# Manifest Fixtures
# ============================================================================


SAMPLE_MANIFESTS = """\
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: pod-reader
rules:
- apiGroups: [""]
  resources: ["pods"]
  verbs: ["get", "list", "watch"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: read-pods-global
subjects:
- kind: User
  name: alice
  apiGroup: rbac.authorization.k8s.io
roleRef:
  kind: ClusterRole
  name: pod-reader
  apiGroup: rbac.authorization.k8s.io
---
apiVersion: rbac.authorization.k8s.io/v1
kind: Role
metadata:
  name: secret-reader
  namespace: prod
rules:
- apiGroups: [""]
  resources: ["secrets"]
  verbs: ["get"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: RoleBinding
metadata:
  name: read-secrets
  namespace: prod
subjects:
- kind: ServiceAccount
  name: deployer
  namespace: ci
roleRef:
  kind: Role
  name: secret-reader
  apiGroup: rbac.authorization.k8s.io
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: unrelated
data:
  key: value
"""


@pytest.fixture
def manifest_file(tmp_path):
    """A multi-document RBAC manifest on disk."""
    path = tmp_path / "rbac.yaml"
    path.write_text(SAMPLE_MANIFESTS)
    return path
