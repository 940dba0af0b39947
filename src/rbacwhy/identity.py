"""
Current-context identity extraction.

When no --as subject is given, rbac-why checks the identity the current
kubeconfig context authenticates as. What can be learned offline depends
on the auth method:

- client certificate: CN is the user, O entries are groups
- token / auth-provider / generic exec: only the kubeconfig user name
- AWS IAM (aws-iam-authenticator, `aws eks get-token`): the IAM ARN from
  `aws sts get-caller-identity`, optionally mapped through the
  kube-system/aws-auth ConfigMap to a Kubernetes user and groups
"""

from __future__ import annotations

import base64
import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from cryptography import x509
from cryptography.x509.oid import NameOID
from kubernetes.client.rest import ApiException
from pydantic import BaseModel, Field

from rbacwhy.rbac.models import RBACWhyError

logger = logging.getLogger(__name__)

DEFAULT_KUBECONFIG = "~/.kube/config"

AUTH_CLIENT_CERTIFICATE = "client-certificate"
AUTH_TOKEN = "token"
AUTH_AWS_IAM = "aws-iam"
AUTH_UNKNOWN = "unknown"

AWS_AUTH_NAMESPACE = "kube-system"
AWS_AUTH_CONFIGMAP = "aws-auth"


class IdentityError(RBACWhyError):
    """Raised when the current identity cannot be determined."""


class ContextInfo(BaseModel):
    """What the current kubeconfig context says about who we are."""
    context_name: str = Field(..., description="kubeconfig context name")
    cluster_name: str = Field("", description="Cluster the context points at")
    auth_info: str = Field(..., description="kubeconfig user entry name")
    user_name: str = Field(..., description="Identity as the API server sees it")
    groups: List[str] = Field(default_factory=list, description="Groups (cert O=, aws-auth)")
    namespace: str = Field("", description="Context default namespace")
    auth_method: str = Field(AUTH_UNKNOWN, description="How the identity was determined")
    aws_iam_arn: Optional[str] = Field(None, description="IAM ARN before aws-auth mapping")


class AWSAuthMapping(BaseModel):
    """One mapRoles / mapUsers entry of the aws-auth ConfigMap."""
    rolearn: str = ""
    userarn: str = ""
    username: str = ""
    groups: List[str] = Field(default_factory=list)


class AWSAuthIdentity(BaseModel):
    """Kubernetes identity an IAM ARN maps to."""
    username: str
    groups: List[str] = Field(default_factory=list)
    found: bool = False


# =============================================================================
# kubeconfig
# =============================================================================


def kubeconfig_paths(kubeconfig: Optional[str] = None) -> List[Path]:
    """Explicit path, else KUBECONFIG entries, else ~/.kube/config."""
    if kubeconfig:
        return [Path(os.path.expanduser(kubeconfig))]
    env = os.environ.get("KUBECONFIG")
    if env:
        return [Path(os.path.expanduser(p)) for p in env.split(os.pathsep) if p]
    return [Path(os.path.expanduser(DEFAULT_KUBECONFIG))]


def load_kubeconfig(kubeconfig: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and merge kubeconfig files.

    Follows kubectl merge rules: the first file to set current-context
    wins, and the first definition of each named context/user/cluster
    wins. Relative certificate paths are resolved against their file.
    """
    merged: Dict[str, Any] = {"current-context": "", "contexts": [], "users": [], "clusters": []}
    seen: Dict[str, set] = {"contexts": set(), "users": set(), "clusters": set()}
    found_any = False

    for path in kubeconfig_paths(kubeconfig):
        if not path.exists():
            continue
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise IdentityError(f"failed to load kubeconfig {path}: {e}") from e
        found_any = True

        if not merged["current-context"] and data.get("current-context"):
            merged["current-context"] = data["current-context"]

        for section in ("contexts", "users", "clusters"):
            for entry in data.get(section) or []:
                name = entry.get("name")
                if name in seen[section]:
                    continue
                seen[section].add(name)
                if section == "users":
                    entry = _absolutize_user(entry, path.parent)
                merged[section].append(entry)

    if not found_any:
        raise IdentityError("no kubeconfig found; use --as to specify a subject")
    return merged


def _absolutize_user(entry: Dict[str, Any], base: Path) -> Dict[str, Any]:
    user = dict(entry.get("user") or {})
    cert = user.get("client-certificate")
    if cert and not os.path.isabs(cert):
        user["client-certificate"] = str(base / cert)
    return {**entry, "user": user}


def _named(entries: List[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
    for entry in entries:
        if entry.get("name") == name:
            return entry
    return None


def load_context_info(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    aws_profile: Optional[str] = None,
) -> ContextInfo:
    """
    Work out who the given (or current) context authenticates as.

    Raises:
        IdentityError: no current context, or the context's user is missing
    """
    raw = load_kubeconfig(kubeconfig)

    context_name = context or raw["current-context"]
    if not context_name:
        raise IdentityError(
            "no current context set in kubeconfig; use --as to specify a subject"
        )

    ctx_entry = _named(raw["contexts"], context_name)
    if ctx_entry is None:
        raise IdentityError(f"context {context_name!r} not found in kubeconfig")
    ctx = ctx_entry.get("context") or {}

    auth_info_name = ctx.get("user") or ""
    if not auth_info_name:
        raise IdentityError(
            f"no user specified in context {context_name!r}; use --as to specify a subject"
        )

    user_entry = _named(raw["users"], auth_info_name)
    if user_entry is None:
        raise IdentityError(f"auth info {auth_info_name!r} not found in kubeconfig")

    user_name, groups, auth_method = extract_user_identity(
        user_entry.get("user") or {}, auth_info_name, aws_profile
    )

    return ContextInfo(
        context_name=context_name,
        cluster_name=ctx.get("cluster") or "",
        auth_info=auth_info_name,
        user_name=user_name,
        groups=groups,
        namespace=ctx.get("namespace") or "",
        auth_method=auth_method,
        aws_iam_arn=user_name if auth_method == AUTH_AWS_IAM else None,
    )


def extract_user_identity(
    auth_info: Dict[str, Any],
    fallback_name: str,
    aws_profile: Optional[str] = None,
) -> Tuple[str, List[str], str]:
    """
    Determine (user, groups, auth method) from a kubeconfig user entry.

    Falls back to the kubeconfig user name whenever the real identity is
    only known to the API server.
    """
    cert_data = auth_info.get("client-certificate-data")
    if cert_data:
        try:
            user, groups = parse_client_certificate(base64.b64decode(cert_data))
            return user, groups, AUTH_CLIENT_CERTIFICATE
        except (ValueError, IdentityError) as e:
            logger.debug(f"Ignoring client-certificate-data: {e}")

    cert_file = auth_info.get("client-certificate")
    if cert_file:
        try:
            user, groups = parse_client_certificate(Path(cert_file).read_bytes())
            return user, groups, AUTH_CLIENT_CERTIFICATE
        except (OSError, ValueError, IdentityError) as e:
            logger.debug(f"Ignoring client-certificate {cert_file}: {e}")

    if auth_info.get("token") or auth_info.get("tokenFile"):
        return fallback_name, [], AUTH_TOKEN

    exec_config = auth_info.get("exec")
    if exec_config:
        if is_aws_auth(exec_config):
            try:
                user, groups = extract_aws_identity(exec_config, aws_profile)
                return user, groups, AUTH_AWS_IAM
            except IdentityError as e:
                logger.warning(f"Could not determine AWS identity: {e}")
        return fallback_name, [], f"exec ({exec_config.get('command', '')})"

    provider = auth_info.get("auth-provider")
    if provider:
        return fallback_name, [], f"auth-provider ({provider.get('name', '')})"

    return fallback_name, [], AUTH_UNKNOWN


def parse_client_certificate(pem_data: bytes) -> Tuple[str, List[str]]:
    """Return (CN, [O, ...]) from a PEM client certificate."""
    cert = x509.load_pem_x509_certificate(pem_data)

    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not common_names or not common_names[0].value:
        raise IdentityError("certificate has no CommonName")

    organizations = cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
    return str(common_names[0].value), [str(o.value) for o in organizations]


# =============================================================================
# AWS IAM
# =============================================================================


def is_aws_auth(exec_config: Dict[str, Any]) -> bool:
    """aws-iam-authenticator, or `aws eks get-token`."""
    command = exec_config.get("command") or ""
    args = exec_config.get("args") or []

    if command == "aws-iam-authenticator" or command.endswith("/aws-iam-authenticator"):
        return True
    if command == "aws" or command.endswith("/aws"):
        for i, arg in enumerate(args[:-1]):
            if arg == "eks" and args[i + 1] == "get-token":
                return True
    return False


def extract_role_from_args(args: List[str]) -> str:
    """Role ARN from -r/--role/--role-arn, in either spaced or = form."""
    for i, arg in enumerate(args):
        if arg in ("-r", "--role", "--role-arn") and i + 1 < len(args):
            return args[i + 1]
        for prefix in ("-r=", "--role=", "--role-arn="):
            if arg.startswith(prefix):
                return arg[len(prefix):]
    return ""


def extract_profile_from_args(args: List[str]) -> str:
    for i, arg in enumerate(args):
        if arg == "--profile" and i + 1 < len(args):
            return args[i + 1]
        if arg.startswith("--profile="):
            return arg[len("--profile="):]
    return ""


def convert_role_to_assumed_role_arn(role_arn: str, account_id: str) -> str:
    """
    arn:aws:iam::123:role/path/my-role -> arn:aws:sts::123:assumed-role/my-role

    The session name is unknown offline and is left off.
    """
    parts = role_arn.split("/")
    if len(parts) < 2:
        return role_arn
    return f"arn:aws:sts::{account_id}:assumed-role/{parts[-1]}"


def extract_aws_identity(
    exec_config: Dict[str, Any],
    aws_profile: Optional[str] = None,
) -> Tuple[str, List[str]]:
    """
    Ask AWS who we are, the way the exec plugin would authenticate.

    Raises:
        IdentityError: the aws CLI is missing, fails, or returns junk
    """
    args = exec_config.get("args") or []
    role_arn = extract_role_from_args(args)
    profile = aws_profile or extract_profile_from_args(args)

    env = dict(os.environ)
    for var in exec_config.get("env") or []:
        env[var["name"]] = var.get("value", "")

    command = ["aws", "sts", "get-caller-identity", "--output", "json"]
    if profile:
        command += ["--profile", profile]

    try:
        completed = subprocess.run(
            command, env=env, capture_output=True, text=True, check=True
        )
    except FileNotFoundError as e:
        raise IdentityError("aws CLI not found on PATH") from e
    except subprocess.CalledProcessError as e:
        raise IdentityError(
            f"failed to get AWS caller identity: {e} (stderr: {e.stderr.strip()})"
        ) from e

    try:
        response = json.loads(completed.stdout)
    except json.JSONDecodeError as e:
        raise IdentityError(f"failed to parse AWS caller identity: {e}") from e

    if role_arn:
        return convert_role_to_assumed_role_arn(role_arn, response.get("Account", "")), []
    return response.get("Arn", ""), []


def matches_assumed_role(role_arn: str, assumed_role_arn: str) -> bool:
    """
    True if assumed_role_arn is a session of role_arn.

    role_arn:         arn:aws:iam::123:role[/path]/my-role
    assumed_role_arn: arn:aws:sts::123:assumed-role/my-role[/session]
    """
    halves = role_arn.split(":role/")
    if len(halves) != 2:
        return False
    role_name = halves[1].rsplit("/", 1)[-1]

    arn_parts = role_arn.split(":")
    if len(arn_parts) < 5:
        return False
    account = arn_parts[4]

    expected = f"arn:aws:sts::{account}:assumed-role/{role_name}"
    return assumed_role_arn == expected or assumed_role_arn.startswith(expected + "/")


def resolve_username(username_template: str, iam_arn: str) -> str:
    """Expand {{AccountID}} and {{SessionName}} in an aws-auth username."""
    if not username_template:
        return iam_arn

    result = username_template
    arn_parts = iam_arn.split(":")
    if len(arn_parts) >= 5:
        result = result.replace("{{AccountID}}", arn_parts[4])

    if ":assumed-role/" in iam_arn:
        parts = iam_arn.split("/")
        if len(parts) >= 3:
            result = result.replace("{{SessionName}}", parts[-1])

    return result


def find_mapping_for_arn(
    mappings: List[AWSAuthMapping],
    iam_arn: str,
    is_role_mapping: bool,
) -> Optional[AWSAuthIdentity]:
    for mapping in mappings:
        mapping_arn = mapping.rolearn if is_role_mapping else mapping.userarn
        if not mapping_arn:
            continue
        if mapping_arn == iam_arn or (
            is_role_mapping and matches_assumed_role(mapping_arn, iam_arn)
        ):
            return AWSAuthIdentity(
                username=resolve_username(mapping.username, iam_arn),
                groups=list(mapping.groups),
                found=True,
            )
    return None


def _parse_mappings(raw: Optional[str], key: str) -> List[AWSAuthMapping]:
    if not raw:
        return []
    try:
        entries = yaml.safe_load(raw) or []
        return [AWSAuthMapping.model_validate(entry) for entry in entries]
    except (yaml.YAMLError, ValueError, TypeError) as e:
        logger.warning(f"Ignoring unparseable aws-auth {key}: {e}")
        return []


def resolve_aws_auth_identity(core_api: Any, iam_arn: str) -> AWSAuthIdentity:
    """
    Map an IAM ARN through kube-system/aws-auth.

    mapRoles is consulted before mapUsers. An unmapped ARN is its own
    username with no groups, as on EKS.

    Raises:
        IdentityError: the ConfigMap cannot be read
    """
    try:
        configmap = core_api.read_namespaced_config_map(AWS_AUTH_CONFIGMAP, AWS_AUTH_NAMESPACE)
    except ApiException as e:
        raise IdentityError(
            f"failed to get {AWS_AUTH_NAMESPACE}/{AWS_AUTH_CONFIGMAP} ConfigMap: {e.status} {e.reason}"
        ) from e

    data = configmap.data or {}
    for key, is_role in (("mapRoles", True), ("mapUsers", False)):
        identity = find_mapping_for_arn(_parse_mappings(data.get(key), key), iam_arn, is_role)
        if identity is not None:
            return identity

    return AWSAuthIdentity(username=iam_arn, groups=[], found=False)
