"""
Result printers.

Each printer renders a PermissionResult (plus, when the subject came from
the kubeconfig, the ContextInfo it was derived from) to a string.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import yaml

from rbacwhy.identity import ContextInfo
from rbacwhy.rbac.models import (
    PermissionGrant,
    PermissionRequest,
    PermissionResult,
    PolicyRule,
)


class BasePrinter(ABC):
    """Renders a resolution result."""

    @abstractmethod
    def render(
        self,
        result: PermissionResult,
        context: Optional[ContextInfo] = None,
    ) -> str:
        pass


def format_resource(request: PermissionRequest) -> str:
    """pods/exec.apps (name: web-0) style label for a request."""
    text = request.full_resource
    if request.api_group:
        text += f".{request.api_group}"
    if request.resource_name:
        text += f" (name: {request.resource_name})"
    return text


# =============================================================================
# Text
# =============================================================================


class TextPrinter(BasePrinter):
    """Human-readable path listing."""

    def render(
        self,
        result: PermissionResult,
        context: Optional[ContextInfo] = None,
    ) -> str:
        lines: List[str] = []
        request = result.request

        if context is not None:
            lines.append("Using current context:")
            lines.append(f"  Context:    {context.context_name}")
            lines.append(f"  Cluster:    {context.cluster_name}")
            lines.append(f"  AuthInfo:   {context.auth_info}")
            lines.append(f"  User:       {context.user_name}")
            if context.groups:
                lines.append(f"  Groups:     {', '.join(context.groups)}")
            if context.auth_method:
                lines.append(f"  AuthMethod: {context.auth_method}")
            if context.namespace:
                lines.append(f"  Namespace:  {context.namespace}")
            lines.append("")

        if not result.allowed:
            lines.append(
                f"DENIED: No RBAC rules grant {request.verb} "
                f"{format_resource(request)} to {result.subject}"
            )
            if request.namespace:
                lines.append(f"Namespace: {request.namespace}")
        else:
            header = f"ALLOWED: {result.subject} can {request.verb} {format_resource(request)}"
            if request.namespace:
                header += f" in namespace {request.namespace}"
            lines.append(header)
            lines.append("")
            lines.append(f"Permission granted through {len(result.grants)} path(s):")
            lines.append("")
            for i, grant in enumerate(result.grants, start=1):
                lines.extend(self._path(i, result, grant))

        if result.errors:
            if lines and lines[-1] != "":
                lines.append("")
            lines.append(
                f"Warning: {len(result.errors)} binding(s) could not be resolved; "
                "the answer may be incomplete:"
            )
            for error in result.errors:
                lines.append(f"  - {error}")

        return "\n".join(lines).rstrip("\n") + "\n"

    @staticmethod
    def _path(index: int, result: PermissionResult, grant: PermissionGrant) -> List[str]:
        arrow = ["      |", "      v"]
        binding = f"  {grant.binding.kind}: {grant.binding.name}"
        if grant.binding.namespace:
            binding += f" (namespace: {grant.binding.namespace})"
        role = f"  {grant.role.kind}: {grant.role.name}"
        if grant.role.namespace:
            role += f" (namespace: {grant.role.namespace})"
        return [
            f"Path {index}:",
            f"  Subject: {result.subject}",
            *arrow,
            binding,
            *arrow,
            role,
            *arrow,
            f"  Rule: {grant.matching_rule}",
            f"  Scope: {grant.scope}",
            "",
        ]


# =============================================================================
# Structured
# =============================================================================


def _omit_empty(data: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in keys or v}


def rule_to_dict(rule: PolicyRule) -> Dict[str, Any]:
    return _omit_empty({
        "verbs": list(rule.verbs),
        "apiGroups": list(rule.api_groups),
        "resources": list(rule.resources),
        "resourceNames": list(rule.resource_names),
        "nonResourceURLs": list(rule.non_resource_urls),
    }, "resourceNames", "nonResourceURLs")


def grant_to_dict(grant: PermissionGrant) -> Dict[str, Any]:
    return {
        "binding": _omit_empty(grant.binding.model_dump(mode="json"), "namespace"),
        "role": _omit_empty(grant.role.model_dump(mode="json"), "namespace"),
        "matchingRule": rule_to_dict(grant.matching_rule),
        "scope": grant.scope,
    }


def context_to_dict(context: ContextInfo) -> Dict[str, Any]:
    return _omit_empty({
        "contextName": context.context_name,
        "clusterName": context.cluster_name,
        "authInfo": context.auth_info,
        "userName": context.user_name,
        "groups": list(context.groups),
        "authMethod": context.auth_method,
        "namespace": context.namespace,
        "awsIamArn": context.aws_iam_arn,
    }, "groups", "authMethod", "namespace", "awsIamArn")


def result_to_dict(
    result: PermissionResult,
    context: Optional[ContextInfo] = None,
) -> Dict[str, Any]:
    """camelCase dict mirroring the rbac.authorization.k8s.io field names."""
    request = result.request
    subject = result.subject
    data: Dict[str, Any] = {}
    if context is not None:
        data["context"] = context_to_dict(context)
    data["allowed"] = result.allowed
    data["subject"] = _omit_empty({
        "kind": subject.kind,
        "name": subject.name,
        "namespace": subject.namespace,
        "groups": list(subject.groups),
    }, "namespace", "groups")
    data["request"] = _omit_empty({
        "verb": request.verb,
        "apiGroup": request.api_group,
        "resource": request.resource,
        "subresource": request.subresource,
        "resourceName": request.resource_name,
        "namespace": request.namespace,
    }, "subresource", "resourceName", "namespace")
    data["grants"] = [grant_to_dict(g) for g in result.grants]
    if result.errors:
        data["errors"] = [error.message for error in result.errors]
    return data


class JSONPrinter(BasePrinter):
    def render(
        self,
        result: PermissionResult,
        context: Optional[ContextInfo] = None,
    ) -> str:
        return json.dumps(result_to_dict(result, context), indent=2) + "\n"


class YAMLPrinter(BasePrinter):
    def render(
        self,
        result: PermissionResult,
        context: Optional[ContextInfo] = None,
    ) -> str:
        return yaml.dump(
            result_to_dict(result, context),
            default_flow_style=False,
            sort_keys=False,
        )
