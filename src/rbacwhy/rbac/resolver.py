"""
RBAC grant chain resolver.

Answers "why can (or can't) this subject do that" by walking every
binding that names the subject and reporting each rule that grants the
request as a separate chain.

Example:
    resolver = RBACResolver(source)

    result = resolver.resolve_permission(
        parse_subject("system:serviceaccount:ci:builder"),
        PermissionRequest(verb="get", resource="secrets", namespace="ci"),
    )
    for grant in result.grants:
        print(grant.binding, grant.role, grant.scope)

    # Everything the subject can do (for risk analysis)
    grants = resolver.resolve_all_permissions(subject, namespace="ci")
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, NamedTuple, Optional, Sequence

from rbacwhy.rbac.matcher import binding_matches_subject, rule_matches
from rbacwhy.rbac.models import (
    Binding,
    DataSourceError,
    PermissionGrant,
    PermissionInventory,
    PermissionRequest,
    PermissionResult,
    PolicyRule,
    ReferencedObjectMissing,
    ResolutionCancelled,
    ResolutionError,
    Subject,
)
from rbacwhy.rbac.source import BaseRBACDataSource, get_data_source
from rbacwhy.rbac.subjects import effective_groups

logger = logging.getLogger(__name__)

RuleFilter = Callable[[PolicyRule], bool]


class BindingOutcome(NamedTuple):
    """What one binding contributes: grants, or the error that prevented them."""
    grants: List[PermissionGrant]
    errors: List[ResolutionError]


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ResolutionCancelled("resolution cancelled")


class RBACResolver:
    """
    Resolves permissions against an RBAC data source.

    Holds no mutable state between calls, so one instance can serve
    concurrent resolutions as long as the data source allows concurrent
    reads.
    """

    def __init__(self, source: Optional[BaseRBACDataSource] = None):
        self.source = source if source is not None else get_data_source()

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    def _binding_outcome(
        self,
        binding: Binding,
        rule_filter: RuleFilter,
        cancel_event: Optional[threading.Event],
    ) -> BindingOutcome:
        """Fetch the binding's role and emit one grant per accepted rule."""
        _check_cancelled(cancel_event)
        try:
            role = self.source.get_referenced_role(binding.role_ref)
        except ResolutionCancelled:
            raise
        except DataSourceError as e:
            ref = binding.role_ref
            reason = e.reason if isinstance(e, ReferencedObjectMissing) else str(e)
            error = ResolutionError(
                binding=binding.info(),
                role_ref_kind=ref.kind,
                role_ref_name=ref.name,
                namespace=getattr(ref, "namespace", None) or None,
                message=f"failed to resolve {ref.kind} {ref.name} "
                        f"for {binding.kind} {binding.name}: {reason}",
            )
            logger.warning(error.message)
            return BindingOutcome([], [error])

        binding_info = binding.info()
        role_info = role.info()
        grants = [
            PermissionGrant(
                binding=binding_info,
                role=role_info,
                matching_rule=rule,
                scope=binding.scope,
            )
            for rule in role.rules
            if rule_filter(rule)
        ]
        if grants:
            logger.debug(
                f"{binding.kind} {binding.name} -> {role.kind} {role.name}: "
                f"{len(grants)} matching rule(s)"
            )
        return BindingOutcome(grants, [])

    def _walk(
        self,
        subject: Subject,
        namespace: str,
        rule_filter: RuleFilter,
        cancel_event: Optional[threading.Event],
    ) -> BindingOutcome:
        """
        Fold per-binding outcomes over cluster bindings, then namespace bindings.

        List failures and cancellation propagate; a failed role lookup only adds an error.
        """
        groups = effective_groups(subject)

        def outcomes_for(bindings: Iterable[Binding]) -> List[BindingOutcome]:
            return [
                self._binding_outcome(binding, rule_filter, cancel_event)
                for binding in bindings
                if binding_matches_subject(binding, subject, groups)
            ]

        _check_cancelled(cancel_event)
        outcomes = outcomes_for(self.source.list_cluster_role_bindings())

        if namespace:
            _check_cancelled(cancel_event)
            outcomes += outcomes_for(self.source.list_role_bindings(namespace))

        return BindingOutcome(
            [grant for outcome in outcomes for grant in outcome.grants],
            [error for outcome in outcomes for error in outcome.errors],
        )

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def resolve_permission(
        self,
        subject: Subject,
        request: PermissionRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> PermissionResult:
        """
        Find every chain granting `request` to `subject`.

        Cluster-scoped chains come first, then chains from RoleBindings in
        request.namespace. Identical permissions granted by different
        bindings are all reported.

        Raises:
            DataSourceUnavailable: a binding list could not be read
            ResolutionCancelled: cancel_event was set or a call timed out
        """
        outcome = self._walk(
            subject,
            request.namespace,
            lambda rule: rule_matches(rule, request),
            cancel_event,
        )
        result = PermissionResult.build(subject, request, outcome.grants, outcome.errors)

        logger.info(
            f"{'Allowed' if result.allowed else 'Denied'}: {subject} "
            f"{request.verb} {request.full_resource}"
            f"{' in ' + request.namespace if request.namespace else ''} "
            f"(grants={len(result.grants)}, errors={len(result.errors)})"
        )
        return result

    def resolve_inventory(
        self,
        subject: Subject,
        namespace: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> PermissionInventory:
        """Every rule reachable by `subject`, plus the roles that could not be read."""
        outcome = self._walk(subject, namespace, lambda rule: True, cancel_event)
        return PermissionInventory(
            subject=subject,
            namespace=namespace,
            grants=outcome.grants,
            errors=outcome.errors,
        )

    def resolve_all_permissions(
        self,
        subject: Subject,
        namespace: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PermissionGrant]:
        """
        Every rule reachable by `subject`, as a flat grant list.

        Bindings whose role cannot be read are skipped (and logged).
        """
        return self.resolve_inventory(subject, namespace, cancel_event).grants

    def check_many(
        self,
        subject: Subject,
        requests: Sequence[PermissionRequest],
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[PermissionResult]:
        """
        Resolve several requests in parallel threads.

        Results come back in request order. The first hard error is raised
        once all submitted work has finished.
        """
        if max_workers is None:
            from rbacwhy.config import get_config
            max_workers = get_config().max_workers

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [
                pool.submit(self.resolve_permission, subject, request, cancel_event)
                for request in requests
            ]
            return [future.result() for future in futures]


# =============================================================================
# Module-level helpers
# =============================================================================


def resolve_permission(
    subject: Subject,
    request: PermissionRequest,
    source: Optional[BaseRBACDataSource] = None,
) -> PermissionResult:
    """Resolve with the default resolver, or a throwaway one over `source`."""
    resolver = RBACResolver(source) if source is not None else get_resolver()
    return resolver.resolve_permission(subject, request)


def resolve_all_permissions(
    subject: Subject,
    namespace: str = "",
    source: Optional[BaseRBACDataSource] = None,
) -> List[PermissionGrant]:
    """Enumerate with the default resolver, or a throwaway one over `source`."""
    resolver = RBACResolver(source) if source is not None else get_resolver()
    return resolver.resolve_all_permissions(subject, namespace)


# =============================================================================
# Global Resolver
# =============================================================================

_default_resolver: Optional[RBACResolver] = None


def get_resolver() -> RBACResolver:
    """Get the default RBAC resolver."""
    global _default_resolver

    if _default_resolver is None:
        _default_resolver = RBACResolver()

    return _default_resolver


def set_resolver(resolver: RBACResolver) -> None:
    """Set the default resolver (for testing)."""
    global _default_resolver
    _default_resolver = resolver


def reset_resolver() -> None:
    """Reset the default resolver (for testing)."""
    global _default_resolver
    _default_resolver = None
