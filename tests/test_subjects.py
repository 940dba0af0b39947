"""
Tests for subject parsing and implicit group membership.
"""

import pytest

from rbacwhy.rbac import (
    EmptySubjectError,
    MalformedIdentifierError,
    RBACWhyError,
    Subject,
    SubjectKind,
    effective_groups,
    implicit_groups,
    parse_subject,
    service_account_username,
)


class TestParseSubject:
    """Identifier forms accepted by parse_subject."""

    def test_service_account(self):
        """system:serviceaccount:ns:name is a ServiceAccount."""
        subject = parse_subject("system:serviceaccount:kube-system:admin-sa")
        assert subject.kind == SubjectKind.SERVICE_ACCOUNT
        assert subject.namespace == "kube-system"
        assert subject.name == "admin-sa"

    def test_system_group(self):
        """Other system: identifiers are groups."""
        subject = parse_subject("system:masters")
        assert subject.kind == SubjectKind.GROUP
        assert subject.name == "system:masters"
        assert subject.namespace is None

    def test_plain_user(self):
        """Anything else is a user."""
        subject = parse_subject("alice@example.com")
        assert subject.kind == SubjectKind.USER
        assert subject.name == "alice@example.com"

    def test_iam_arn_is_user(self):
        """ARNs contain colons but no system: prefix."""
        subject = parse_subject("arn:aws:iam::123456789012:user/bob")
        assert subject.kind == SubjectKind.USER

    def test_explicit_groups_attached(self):
        """Groups passed alongside the identifier are kept in order."""
        subject = parse_subject("alice", ["devs", "oncall"])
        assert subject.groups == ["devs", "oncall"]

    def test_empty_identifier(self):
        """Empty input is rejected before anything else."""
        with pytest.raises(EmptySubjectError):
            parse_subject("")

    @pytest.mark.parametrize("identifier", [
        "system:serviceaccount:default",
        "system:serviceaccount:default:sa:extra",
        "system:serviceaccount:",
    ])
    def test_wrong_field_count(self, identifier):
        """ServiceAccount identifiers need exactly namespace and name."""
        with pytest.raises(MalformedIdentifierError):
            parse_subject(identifier)

    @pytest.mark.parametrize("identifier,namespace,name", [
        ("system:serviceaccount::builder", "", "builder"),
        ("system:serviceaccount:default:", "default", ""),
    ])
    def test_empty_fields_accepted(self, identifier, namespace, name):
        """Only the field count is checked; empty fields are kept as given."""
        subject = parse_subject(identifier)
        assert subject.kind == SubjectKind.SERVICE_ACCOUNT
        assert subject.namespace == namespace
        assert subject.name == name

    def test_wrong_field_count_carries_identifier(self):
        with pytest.raises(MalformedIdentifierError) as exc_info:
            parse_subject("system:serviceaccount:ci")
        assert exc_info.value.identifier == "system:serviceaccount:ci"

    def test_parse_errors_share_base(self):
        """Callers can catch every rbac-why failure with one class."""
        with pytest.raises(RBACWhyError):
            parse_subject("")
        with pytest.raises(ValueError):
            parse_subject("system:serviceaccount:x")

    def test_username_round_trips(self):
        """A parsed ServiceAccount reports the reserved username."""
        identifier = service_account_username("ci", "deployer")
        assert identifier == "system:serviceaccount:ci:deployer"
        assert parse_subject(identifier).username == identifier


class TestSubjectIdentity:
    """Subject equality and immutability."""

    def test_same_identity_ignores_groups(self):
        """Groups do not affect identity."""
        a = parse_subject("alice", ["devs"])
        b = parse_subject("alice")
        assert a.same_identity(b)

    def test_service_account_namespace_matters(self):
        """Same name in another namespace is another ServiceAccount."""
        a = parse_subject("system:serviceaccount:a:builder")
        b = parse_subject("system:serviceaccount:b:builder")
        assert not a.same_identity(b)

    def test_kind_matters(self):
        """A user and a group with the same name differ."""
        a = Subject(kind=SubjectKind.USER, name="ops")
        b = Subject(kind=SubjectKind.GROUP, name="ops")
        assert not a.same_identity(b)

    def test_frozen(self):
        """Subjects cannot be mutated after construction."""
        subject = parse_subject("alice")
        with pytest.raises(Exception):
            subject.name = "mallory"

    def test_str(self):
        assert str(parse_subject("system:serviceaccount:ci:deployer")) == "ServiceAccount ci/deployer"
        assert str(parse_subject("alice")) == "User alice"


class TestImplicitGroups:
    """Groups every authenticated request carries."""

    def test_service_account_groups(self):
        """ServiceAccounts get exactly three implicit groups, in order."""
        subject = parse_subject("system:serviceaccount:prod:web")
        assert implicit_groups(subject) == [
            "system:authenticated",
            "system:serviceaccounts",
            "system:serviceaccounts:prod",
        ]

    @pytest.mark.parametrize("identifier", ["alice", "system:masters"])
    def test_user_and_group(self, identifier):
        """Users and groups only get system:authenticated."""
        assert implicit_groups(parse_subject(identifier)) == ["system:authenticated"]

    def test_explicit_groups_not_implicit(self):
        """Explicit groups are not part of the implicit set."""
        subject = parse_subject("alice", ["devs"])
        assert "devs" not in implicit_groups(subject)

    def test_effective_groups_order_and_dedup(self):
        """Explicit first, implicit after, duplicates dropped."""
        subject = parse_subject("alice", ["devs", "system:authenticated", "devs"])
        assert effective_groups(subject) == ["devs", "system:authenticated"]
