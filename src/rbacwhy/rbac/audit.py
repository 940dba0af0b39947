"""
RBAC Audit Emitter.

Emits resolution results as OTel spans so "why" answers can be queried
after the fact.

Example TraceQL queries:
    # Every denial
    { name = "rbac.deny" }

    # Checks answered with partial visibility
    { rbac.error_count > 0 }

    # Everything checked for one ServiceAccount
    { rbac.subject.name = "builder" && rbac.subject.namespace = "ci" }
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from rbacwhy.rbac.models import (
    PermissionRequest,
    PermissionResult,
    RiskyPermission,
    Subject,
)

logger = logging.getLogger(__name__)


def _set_subject_attributes(span: trace.Span, subject: Subject) -> None:
    span.set_attribute("rbac.subject.kind", subject.kind)
    span.set_attribute("rbac.subject.name", subject.name)
    if subject.namespace:
        span.set_attribute("rbac.subject.namespace", subject.namespace)
    if subject.groups:
        span.set_attribute("rbac.subject.groups", list(subject.groups))


class RBACAuditEmitter:
    """
    Emits RBAC resolution results as OTel spans.

    Each result becomes one span named rbac.allow or rbac.deny, with one
    grant.matched event per grant chain and one resolution.error event per
    role that could not be read.

    Example:
        emitter = RBACAuditEmitter()
        trace_id = emitter.emit_result(result)
    """

    def __init__(
        self,
        tracer_name: str = "rbacwhy.rbac.audit",
        tracer_provider: Optional[trace.TracerProvider] = None,
    ):
        self.tracer = trace.get_tracer(tracer_name, tracer_provider=tracer_provider)

    def emit_result(self, result: PermissionResult) -> str:
        """
        Emit a resolution result as an OTel span.

        Returns trace_id for reference.
        """
        request = result.request
        span_name = "rbac.allow" if result.allowed else "rbac.deny"

        with self.tracer.start_as_current_span(
            span_name,
            kind=SpanKind.INTERNAL,
        ) as span:
            _set_subject_attributes(span, result.subject)
            span.set_attribute("rbac.allowed", result.allowed)
            span.set_attribute("rbac.verb", request.verb)
            span.set_attribute("rbac.api_group", request.api_group)
            span.set_attribute("rbac.resource", request.full_resource)
            if request.resource_name:
                span.set_attribute("rbac.resource_name", request.resource_name)
            if request.namespace:
                span.set_attribute("rbac.namespace", request.namespace)
            span.set_attribute("rbac.grant_count", len(result.grants))
            span.set_attribute("rbac.error_count", len(result.errors))

            for grant in result.grants:
                span.add_event(
                    "grant.matched",
                    attributes={
                        "binding": str(grant.binding),
                        "role": str(grant.role),
                        "scope": grant.scope,
                        "rule": str(grant.matching_rule),
                    },
                )

            for error in result.errors:
                span.add_event(
                    "resolution.error",
                    attributes={
                        "binding": str(error.binding),
                        "role_ref": f"{error.role_ref_kind} {error.role_ref_name}",
                        "message": error.message,
                    },
                )

            if result.allowed:
                span.set_status(Status(StatusCode.OK))
            else:
                span.set_status(
                    Status(StatusCode.ERROR, "No RBAC rule grants this request")
                )

            trace_id = format(span.get_span_context().trace_id, "032x")

        return trace_id

    def emit_risks(self, subject: Subject, namespace: str, risks: List[RiskyPermission]) -> str:
        """
        Emit a risk analysis as one span with a risk.detected event per category.

        Returns trace_id for reference.
        """
        with self.tracer.start_as_current_span(
            "rbac.risk_analysis",
            kind=SpanKind.INTERNAL,
        ) as span:
            _set_subject_attributes(span, subject)
            if namespace:
                span.set_attribute("rbac.namespace", namespace)
            span.set_attribute("rbac.risk_count", len(risks))

            for risk in risks:
                span.add_event(
                    "risk.detected",
                    attributes={
                        "category": risk.category,
                        "severity": risk.severity,
                        "grant_count": len(risk.grants),
                    },
                )

            trace_id = format(span.get_span_context().trace_id, "032x")

        return trace_id


class AuditingResolver:
    """
    Resolver wrapper that automatically emits audit spans.

    Example:
        resolver = AuditingResolver(RBACResolver(source))
        result = resolver.resolve_permission(subject, request)  # audited
    """

    def __init__(
        self,
        resolver: Optional["RBACResolver"] = None,
        emitter: Optional[RBACAuditEmitter] = None,
        audit_allows: bool = True,
        audit_denies: bool = True,
    ):
        from rbacwhy.rbac.resolver import get_resolver

        self.resolver = resolver or get_resolver()
        self.emitter = emitter or RBACAuditEmitter()
        self.audit_allows = audit_allows
        self.audit_denies = audit_denies

    def resolve_permission(
        self,
        subject: Subject,
        request: PermissionRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> PermissionResult:
        """Resolve and emit an audit span."""
        result = self.resolver.resolve_permission(subject, request, cancel_event)
        self._maybe_emit(result)
        return result

    def resolve_all_permissions(self, *args, **kwargs):
        """Enumeration is not audited; passes straight through."""
        return self.resolver.resolve_all_permissions(*args, **kwargs)

    def _maybe_emit(self, result: PermissionResult) -> None:
        if result.allowed and self.audit_allows:
            self.emitter.emit_result(result)
        elif not result.allowed and self.audit_denies:
            self.emitter.emit_result(result)


def configure_tracing(
    endpoint: str,
    insecure: bool = True,
    service_name: str = "rbac-why",
) -> "TracerProvider":
    """
    Install an OTLP-exporting tracer provider for audit spans.

    Call provider.force_flush() before the process exits.
    """
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    from rbacwhy import __version__

    resource = Resource.create({
        "service.name": service_name,
        "service.version": __version__,
    })
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint, insecure=insecure)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    logger.debug(f"Audit spans exported to {endpoint}")
    return provider
