"""rbac-why CLI - the can-i command."""

import logging
import re
import sys
from typing import Optional, Tuple

import click

from rbacwhy.rbac.models import RBACWhyError

logger = logging.getLogger(__name__)

# v1, v2beta1, v1alpha3
_API_VERSION = re.compile(r"^v\d+((alpha|beta)\d+)?$")


def parse_resource(arg: str) -> Tuple[str, str, str]:
    """
    Split a kubectl-style resource argument.

    Returns (resource, subresource, api_group):
        pods                 -> ("pods", "", "")
        pods/exec            -> ("pods", "exec", "")
        deployments.apps     -> ("deployments", "", "apps")
        deployments.apps/v1  -> ("deployments", "", "apps")
    """
    head, _, subresource = arg.partition("/")
    resource, _, api_group = head.partition(".")

    if api_group and _API_VERSION.match(subresource):
        subresource = ""

    return resource, subresource, api_group


def _resolve_subject(
    as_subject: Optional[str],
    as_groups: Tuple[str, ...],
    kubeconfig: Optional[str],
    context: Optional[str],
    aws_profile: Optional[str],
    lookup_aws_auth: bool,
):
    """
    Returns (subject, context_info). context_info is None when --as was given.
    """
    from rbacwhy.identity import load_context_info
    from rbacwhy.rbac.subjects import parse_subject

    if as_subject:
        return parse_subject(as_subject, list(as_groups)), None

    info = load_context_info(kubeconfig, context, aws_profile)
    user_name = info.user_name
    groups = list(info.groups) + list(as_groups)

    if info.aws_iam_arn and lookup_aws_auth:
        mapped = _lookup_aws_auth(kubeconfig, context, info.aws_iam_arn)
        if mapped is not None and mapped.found:
            user_name = mapped.username
            groups = groups + [g for g in mapped.groups if g not in groups]
            info = info.model_copy(update={"user_name": user_name, "groups": groups})

    return parse_subject(user_name, groups), info


def _lookup_aws_auth(kubeconfig: Optional[str], context: Optional[str], iam_arn: str):
    from kubernetes import client, config as k8s_config
    from kubernetes.config.config_exception import ConfigException

    from rbacwhy.identity import resolve_aws_auth_identity

    try:
        api_client = k8s_config.new_client_from_config(
            config_file=kubeconfig, context=context
        )
        return resolve_aws_auth_identity(client.CoreV1Api(api_client), iam_arn)
    except (ConfigException, RBACWhyError) as e:
        logger.warning(f"Could not map {iam_arn} through aws-auth: {e}")
        return None


@click.command("can-i")
@click.argument("verb", required=False)
@click.argument("resource", required=False)
@click.option("--as", "as_subject", help="Subject to check (user, group, or system:serviceaccount:NS:NAME)")
@click.option("--as-group", "as_groups", multiple=True, help="Extra group membership for the subject (repeatable)")
@click.option("--namespace", "-n", default=None, help="Namespace of the request (cluster-scoped if omitted)")
@click.option("--resource-name", default=None, help="Name of a single object the request targets")
@click.option(
    "--output", "-o", "output_format",
    type=click.Choice(["text", "json", "yaml", "dot", "mermaid"]),
    default=None,
    help="Output format",
)
@click.option("--show-risky", is_flag=True, help="List dangerous permissions the subject holds instead")
@click.option("--kubeconfig", default=None, help="Path to kubeconfig file")
@click.option("--context", default=None, help="Kubeconfig context to use")
@click.option(
    "--manifests", "-f", multiple=True,
    type=click.Path(exists=True),
    help="Read RBAC objects from YAML/JSON files or directories instead of a cluster",
)
@click.option("--aws-profile", default=None, help="AWS profile for EKS identity lookups")
@click.option("--audit", is_flag=True, help="Export the decision as an OTel span")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Diagnostic log level (stderr)",
)
def can_i(
    verb: Optional[str],
    resource: Optional[str],
    as_subject: Optional[str],
    as_groups: Tuple[str, ...],
    namespace: Optional[str],
    resource_name: Optional[str],
    output_format: Optional[str],
    show_risky: bool,
    kubeconfig: Optional[str],
    context: Optional[str],
    manifests: Tuple[str, ...],
    aws_profile: Optional[str],
    audit: bool,
    log_level: Optional[str],
):
    """
    Explain why SUBJECT can (or cannot) VERB RESOURCE.

    \b
    Examples:
        rbac-why can-i get pods --as alice -n default
        rbac-why can-i create pods/exec --as system:serviceaccount:ci:deployer -n ci
        rbac-why can-i list deployments.apps --as-group dev -o mermaid
        rbac-why can-i --show-risky --as system:serviceaccount:kube-system:helm
    """
    from rbacwhy.config import get_config
    from rbacwhy.logger import configure_logging
    from rbacwhy.output import get_printer, render_risky_permissions, render_risky_structured
    from rbacwhy.rbac.audit import AuditingResolver, RBACAuditEmitter, configure_tracing
    from rbacwhy.rbac.models import PermissionRequest
    from rbacwhy.rbac.resolver import RBACResolver
    from rbacwhy.rbac.risk import classify
    from rbacwhy.rbac.source import create_data_source

    cfg = get_config(
        kubeconfig=kubeconfig,
        context=context,
        aws_profile=aws_profile,
        output=output_format,
        log_level=log_level,
    )
    configure_logging()

    if not show_risky and not (verb and resource):
        click.echo("Error: requires VERB and RESOURCE (or --show-risky)", err=True)
        sys.exit(1)

    provider = None
    try:
        subject, context_info = _resolve_subject(
            as_subject,
            as_groups,
            cfg.kubeconfig,
            cfg.context,
            cfg.aws_profile,
            lookup_aws_auth=not manifests,
        )
        if namespace is None:
            namespace = context_info.namespace if context_info else ""

        source = create_data_source(cfg.kubeconfig, cfg.context, manifests)
        resolver = RBACResolver(source)

        emitter = None
        if audit:
            provider = configure_tracing(cfg.otlp_endpoint, cfg.otlp_insecure, cfg.service_name)
            emitter = RBACAuditEmitter(tracer_provider=provider)

        if show_risky:
            risks = classify(resolver.resolve_all_permissions(subject, namespace))
            if emitter is not None:
                emitter.emit_risks(subject, namespace, risks)
            if cfg.output in ("json", "yaml"):
                click.echo(render_risky_structured(risks, cfg.output), nl=False)
            else:
                click.echo(render_risky_permissions(risks), nl=False)
            return

        name, subresource, api_group = parse_resource(resource)
        request = PermissionRequest(
            verb=verb,
            api_group=api_group,
            resource=name,
            subresource=subresource,
            resource_name=resource_name or "",
            namespace=namespace,
        )

        if emitter is not None:
            result = AuditingResolver(resolver, emitter).resolve_permission(subject, request)
        else:
            result = resolver.resolve_permission(subject, request)

        click.echo(get_printer(cfg.output).render(result, context_info), nl=False)

    except RBACWhyError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        if provider is not None:
            provider.force_flush()
