"""
Tests for the rbac-why CLI.
"""

import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from rbacwhy.cli import main
from rbacwhy.cli.cani import parse_resource


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def restore_logger():
    logger = logging.getLogger("rbacwhy")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def token_kubeconfig(tmp_path):
    path = tmp_path / "kubeconfig"
    path.write_text(yaml.safe_dump({
        "apiVersion": "v1",
        "kind": "Config",
        "current-context": "dev",
        "clusters": [{"name": "kind-dev", "cluster": {"server": "https://127.0.0.1:6443"}}],
        "contexts": [
            {"name": "dev", "context": {"cluster": "kind-dev", "user": "alice", "namespace": "prod"}},
        ],
        "users": [{"name": "alice", "user": {"token": "abc"}}],
    }))
    return path


class TestParseResource:
    """kubectl-style resource arguments."""

    @pytest.mark.parametrize("arg,expected", [
        ("pods", ("pods", "", "")),
        ("pods/exec", ("pods", "exec", "")),
        ("deployments.apps", ("deployments", "", "apps")),
        ("deployments.apps/scale", ("deployments", "scale", "apps")),
        ("deployments.apps/v1", ("deployments", "", "apps")),
        ("cronjobs.batch/v2beta1", ("cronjobs", "", "batch")),
        ("ingresses.networking.k8s.io", ("ingresses", "", "networking.k8s.io")),
    ])
    def test_split(self, arg, expected):
        assert parse_resource(arg) == expected


class TestCanI:
    """can-i against manifest files."""

    def test_allowed(self, runner, manifest_file):
        result = runner.invoke(main, [
            "can-i", "get", "pods", "--as", "alice", "-n", "default", "-f", str(manifest_file),
        ])

        assert result.exit_code == 0, result.output
        assert result.output.startswith(
            "ALLOWED: User alice can get pods in namespace default\n"
        )
        assert "ClusterRoleBinding: read-pods-global" in result.output
        assert "ClusterRole: pod-reader" in result.output

    def test_denied_exits_zero(self, runner, manifest_file):
        """A denial is an answer, not a failure."""
        result = runner.invoke(main, [
            "can-i", "delete", "pods", "--as", "alice", "-f", str(manifest_file),
        ])

        assert result.exit_code == 0
        assert result.output == "DENIED: No RBAC rules grant delete pods to User alice\n"

    def test_service_account_namespaced(self, runner, manifest_file):
        args = ["can-i", "get", "secrets", "--as", "system:serviceaccount:ci:deployer",
                "-f", str(manifest_file)]

        in_prod = runner.invoke(main, args + ["-n", "prod"])
        elsewhere = runner.invoke(main, args + ["-n", "staging"])

        assert in_prod.output.startswith("ALLOWED: ServiceAccount ci/deployer")
        assert "RoleBinding: read-secrets (namespace: prod)" in in_prod.output
        assert elsewhere.output.startswith("DENIED:")

    def test_as_group(self, runner, tmp_path):
        manifest = tmp_path / "group.yaml"
        manifest.write_text(yaml.safe_dump_all([
            {"apiVersion": "rbac.authorization.k8s.io/v1", "kind": "ClusterRole",
             "metadata": {"name": "node-viewer"},
             "rules": [{"apiGroups": [""], "resources": ["nodes"], "verbs": ["list"]}]},
            {"apiVersion": "rbac.authorization.k8s.io/v1", "kind": "ClusterRoleBinding",
             "metadata": {"name": "sre-nodes"},
             "subjects": [{"kind": "Group", "name": "sre", "apiGroup": "rbac.authorization.k8s.io"}],
             "roleRef": {"kind": "ClusterRole", "name": "node-viewer", "apiGroup": "rbac.authorization.k8s.io"}},
        ]))

        result = runner.invoke(main, [
            "can-i", "list", "nodes", "--as", "bob", "--as-group", "sre", "-f", str(manifest),
        ])

        assert result.output.startswith("ALLOWED: User bob can list nodes\n")

    def test_json_output(self, runner, manifest_file):
        result = runner.invoke(main, [
            "can-i", "list", "pods", "--as", "alice", "-o", "json", "-f", str(manifest_file),
        ])

        data = json.loads(result.output)
        assert data["allowed"] is True
        assert data["request"]["verb"] == "list"
        assert data["grants"][0]["binding"]["name"] == "read-pods-global"

    def test_output_from_env(self, runner, manifest_file, monkeypatch):
        monkeypatch.setenv("RBACWHY_OUTPUT", "mermaid")
        result = runner.invoke(main, ["can-i", "get", "pods", "--as", "alice", "-f", str(manifest_file)])
        assert result.output.startswith("graph LR\n")

    def test_resource_name(self, runner, tmp_path):
        manifest = tmp_path / "named.yaml"
        manifest.write_text(yaml.safe_dump_all([
            {"apiVersion": "rbac.authorization.k8s.io/v1", "kind": "ClusterRole",
             "metadata": {"name": "one-cm"},
             "rules": [{"apiGroups": [""], "resources": ["configmaps"], "verbs": ["get"],
                        "resourceNames": ["app-config"]}]},
            {"apiVersion": "rbac.authorization.k8s.io/v1", "kind": "ClusterRoleBinding",
             "metadata": {"name": "one-cm"},
             "subjects": [{"kind": "User", "name": "alice", "apiGroup": "rbac.authorization.k8s.io"}],
             "roleRef": {"kind": "ClusterRole", "name": "one-cm", "apiGroup": "rbac.authorization.k8s.io"}},
        ]))
        base = ["can-i", "get", "configmaps", "--as", "alice", "-f", str(manifest)]

        allowed = runner.invoke(main, base + ["--resource-name", "app-config"])
        denied = runner.invoke(main, base + ["--resource-name", "other"])

        assert allowed.output.startswith("ALLOWED:")
        assert denied.output.startswith("DENIED:")


class TestShowRisky:
    """--show-risky mode."""

    def test_none(self, runner, manifest_file):
        """bob is bound to nothing."""
        result = runner.invoke(main, [
            "can-i", "--show-risky", "--as", "bob", "-f", str(manifest_file),
        ])

        assert result.exit_code == 0
        assert result.output == "No risky permissions detected.\n"

    def test_wildcard_signatures_flag_reads(self, runner, manifest_file):
        """Reading pods overlaps the secrets-access and nodes-proxy signatures."""
        result = runner.invoke(main, [
            "can-i", "--show-risky", "--as", "alice", "-f", str(manifest_file),
        ])

        assert result.output.startswith("Found 2 risky permission pattern(s):\n\nCRITICAL:\n")
        assert "  - secrets-access\n" in result.output
        assert "  - nodes-proxy\n" in result.output
        assert "ClusterRoleBinding/read-pods-global -> ClusterRole/pod-reader" in result.output

    def test_secrets_access(self, runner, manifest_file):
        result = runner.invoke(main, [
            "can-i", "--show-risky", "--as", "system:serviceaccount:ci:deployer",
            "-n", "prod", "-f", str(manifest_file),
        ])

        assert "CRITICAL:\n  - secrets-access\n" in result.output
        assert "RoleBinding/read-secrets -> Role/secret-reader" in result.output

    def test_json(self, runner, manifest_file):
        result = runner.invoke(main, [
            "can-i", "--show-risky", "--as", "system:serviceaccount:ci:deployer",
            "-n", "prod", "-o", "json", "-f", str(manifest_file),
        ])

        data = json.loads(result.output)
        assert [r["category"] for r in data["riskyPermissions"]] == ["secrets-access", "nodes-proxy"]


class TestContextSubject:
    """Subject taken from the kubeconfig when --as is absent."""

    def test_token_user(self, runner, manifest_file, token_kubeconfig):
        result = runner.invoke(main, [
            "can-i", "get", "pods", "--kubeconfig", str(token_kubeconfig), "-f", str(manifest_file),
        ])

        assert result.exit_code == 0, result.output
        assert result.output.startswith("Using current context:\n  Context:    dev\n")
        assert "  AuthMethod: token\n" in result.output
        assert "ALLOWED: User alice can get pods in namespace prod\n" in result.output

    def test_explicit_namespace_wins(self, runner, manifest_file, token_kubeconfig):
        result = runner.invoke(main, [
            "can-i", "get", "pods", "-n", "default",
            "--kubeconfig", str(token_kubeconfig), "-f", str(manifest_file),
        ])
        assert "in namespace default" in result.output

    def test_unknown_context(self, runner, manifest_file, token_kubeconfig):
        result = runner.invoke(main, [
            "can-i", "get", "pods", "--context", "prod",
            "--kubeconfig", str(token_kubeconfig), "-f", str(manifest_file),
        ])

        assert result.exit_code == 1
        assert "Error: context 'prod' not found in kubeconfig" in result.output


class TestErrors:
    """Usage and environment failures exit 1."""

    def test_missing_arguments(self, runner):
        result = runner.invoke(main, ["can-i", "get", "--as", "alice"])

        assert result.exit_code == 1
        assert "requires VERB and RESOURCE" in result.output

    def test_malformed_service_account(self, runner, manifest_file):
        result = runner.invoke(main, [
            "can-i", "get", "pods", "--as", "system:serviceaccount:ci", "-f", str(manifest_file),
        ])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_no_kubeconfig(self, runner):
        result = runner.invoke(main, ["can-i", "get", "pods"])

        assert result.exit_code == 1
        assert "no kubeconfig found" in result.output

    def test_bad_manifest(self, runner, tmp_path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("kind: [unclosed\n")

        result = runner.invoke(main, ["can-i", "get", "pods", "--as", "alice", "-f", str(broken)])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_unknown_output_rejected(self, runner, manifest_file):
        result = runner.invoke(main, [
            "can-i", "get", "pods", "--as", "alice", "-o", "xml", "-f", str(manifest_file),
        ])
        assert result.exit_code == 2
