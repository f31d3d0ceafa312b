"""Tests for email merges, account associations and suggestions."""

import pytest

from gitscope.core.identity import IdentityResolver, merge_closure, normalize_email
from gitscope.errors import ConflictError, InvalidInputError, NotFoundError


class TestNormalizeEmail:
    def test_trims_and_lowercases(self):
        assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"

    @pytest.mark.parametrize("value", ["", "jane", "@example.com", "jane@"])
    def test_rejects_non_emails(self, value):
        with pytest.raises(InvalidInputError):
            normalize_email(value)


class TestMergeClosure:
    def test_follows_chains_to_the_end(self):
        closure = merge_closure({"a@x": "b@x", "b@x": "c@x", "d@x": "c@x"})
        assert closure == {"a@x": "c@x", "b@x": "c@x", "d@x": "c@x"}

    def test_terminates_on_cycles(self):
        closure = merge_closure({"a@x": "b@x", "b@x": "a@x"})
        assert set(closure) == {"a@x", "b@x"}


class TestMerges:
    def test_resolution_is_transitive(self, identity, project):
        identity.create_merge(project.id, "a@x.com", "b@x.com")
        identity.create_merge(project.id, "b@x.com", "c@x.com")

        assert identity.resolve_email(project.id, "A@X.com") == "c@x.com"
        assert identity.merged_emails_for_project(project.id) == {
            "a@x.com": "c@x.com",
            "b@x.com": "c@x.com",
        }

    def test_self_merge_is_invalid(self, identity, project):
        with pytest.raises(InvalidInputError):
            identity.create_merge(project.id, "a@x.com", "A@x.com")

    def test_source_can_only_be_merged_once(self, identity, project):
        identity.create_merge(project.id, "a@x.com", "b@x.com")
        with pytest.raises(ConflictError):
            identity.create_merge(project.id, "a@x.com", "c@x.com")

    def test_cycles_are_rejected(self, identity, project):
        identity.create_merge(project.id, "a@x.com", "b@x.com")
        identity.create_merge(project.id, "b@x.com", "c@x.com")

        with pytest.raises(ConflictError) as excinfo:
            identity.create_merge(project.id, "c@x.com", "a@x.com")
        assert excinfo.value.code == "conflict"

    def test_merges_are_scoped_to_a_project(self, identity, projects, project):
        other = projects.create_project("Other", "owner-1")
        identity.create_merge(project.id, "a@x.com", "b@x.com")

        assert identity.resolve_email(other.id, "a@x.com") == "a@x.com"
        identity.create_merge(other.id, "a@x.com", "c@x.com")

    def test_delete_merge(self, identity, project):
        identity.create_merge(project.id, "a@x.com", "b@x.com")

        assert identity.delete_merge(project.id, "a@x.com") is True
        assert identity.delete_merge(project.id, "a@x.com") is False
        assert identity.resolve_email(project.id, "a@x.com") == "a@x.com"

    def test_unknown_project(self, identity):
        with pytest.raises(NotFoundError):
            identity.create_merge("missing", "a@x.com", "b@x.com")


class TestAssociations:
    def test_associate_and_dissociate(self, identity, project, add_account):
        alice = add_account("alice")

        identity.associate(project.id, alice.id, "Alice@X.com")

        assert identity.has_associations(project.id)
        assert identity.bindings(project.id) == {alice.id: "alice@x.com"}
        assert identity.dissociate(project.id, alice.id) is True
        assert not identity.has_associations(project.id)

    def test_account_is_bound_once_per_project(self, identity, project, add_account):
        alice = add_account("alice")
        identity.associate(project.id, alice.id, "a@x.com")

        with pytest.raises(ConflictError):
            identity.associate(project.id, alice.id, "other@x.com")

    def test_email_is_bound_to_one_account_per_project(self, identity, project, add_account):
        alice = add_account("alice")
        bob = add_account("bob")
        identity.associate(project.id, alice.id, "a@x.com")

        with pytest.raises(ConflictError):
            identity.associate(project.id, bob.id, "a@x.com")

    def test_same_binding_in_another_project(self, identity, projects, project, add_account):
        other = projects.create_project("Other", "owner-1")
        alice = add_account("alice")
        identity.associate(project.id, alice.id, "a@x.com")
        identity.associate(other.id, alice.id, "a@x.com")

        assert identity.bindings(other.id) == {alice.id: "a@x.com"}

    def test_associate_by_username(self, identity, project, add_account):
        alice = add_account("Alice")

        identity.associate_by_username(project.id, "alice", "a@x.com")

        assert identity.bindings(project.id) == {alice.id: "a@x.com"}
        with pytest.raises(NotFoundError):
            identity.associate_by_username(project.id, "nobody", "n@x.com")

    def test_account_emails_include_merge_sources(self, identity, project, add_account):
        alice = add_account("alice")
        bob = add_account("bob")
        identity.associate(project.id, alice.id, "alice@old.com")
        identity.create_merge(project.id, "alice@old.com", "alice@new.com")
        identity.create_merge(project.id, "a@laptop.local", "alice@new.com")

        emails = identity.account_emails(project.id, alice.id)

        assert emails == {"alice@old.com", "alice@new.com", "a@laptop.local"}
        assert identity.account_emails(project.id, bob.id) == set()

    def test_unknown_account(self, identity, project):
        with pytest.raises(NotFoundError):
            identity.associate(project.id, "missing", "a@x.com")

    def test_person_is_shared(self, identity):
        first = identity.get_or_create_person("a@x.com", "Alice")
        second = identity.get_or_create_person("A@X.COM")

        assert first.id == second.id


class TestOperatorViews:
    def test_email_overview_applies_merges(
        self, identity, project, repository, add_account, add_commit, at
    ):
        _, upstream = repository
        add_commit(upstream, "a@x.com", at(2024, 3, 1, 10), [("a.py", 1, 0)])
        add_commit(upstream, "a@y.com", at(2024, 3, 5, 10), [("a.py", 1, 0)])
        add_commit(upstream, "a@y.com", at(2024, 3, 6, 10), [("a.py", 1, 0)])
        add_commit(upstream, "b@x.com", at(2024, 3, 2, 10), [("a.py", 1, 0)])
        identity.create_merge(project.id, "a@y.com", "a@x.com")
        identity.associate(project.id, add_account("bob").id, "b@x.com")

        overview = identity.email_overview(project.id)

        assert [o.email for o in overview] == ["a@x.com", "b@x.com"]
        assert overview[0].commit_count == 3
        assert overview[0].merged_emails == ("a@y.com",)
        assert overview[0].first_commit == at(2024, 3, 1, 10)
        assert overview[0].last_commit == at(2024, 3, 6, 10)
        assert not overview[0].bound
        assert overview[1].bound
        assert identity.canonical_emails(project.id) == {"a@x.com", "b@x.com"}

    def test_platform_accounts(
        self, identity, project, repository, add_account, add_pull_request, at
    ):
        _, upstream = repository
        alice = add_account("alice")
        bob = add_account("bob")
        add_account("carol")
        add_pull_request(upstream, alice, at(2024, 3, 1), reviews=[(bob, "approved", False, at(2024, 3, 2))])
        identity.associate(project.id, alice.id, "a@x.com")

        accounts = identity.platform_accounts(project.id)

        assert [(a.username, a.bound_email) for a in accounts] == [
            ("alice", "a@x.com"),
            ("bob", None),
        ]

    def test_suggestions_skip_bound_emails(
        self, identity, project, repository, add_account, add_commit, at
    ):
        _, upstream = repository
        for email in ("jdoe@corp.com", "john.doe@gmail.com", "zed@corp.com", "jane@corp.com"):
            add_commit(upstream, email, at(2024, 3, 1), [("a.py", 1, 0)])
        identity.associate(project.id, add_account("jane").id, "jane@corp.com")

        suggestions = identity.suggest_emails(project.id, "jdoe")

        emails = [s.email for s in suggestions]
        assert emails[0] == "jdoe@corp.com"
        assert "jane@corp.com" not in emails
        assert suggestions == identity.suggest_emails(project.id, "jdoe")
        assert len(identity.suggest_emails(project.id, "jdoe", limit=1)) == 1

    def test_suggestions_need_a_username(self, identity, project):
        with pytest.raises(InvalidInputError):
            identity.suggest_emails(project.id, "  ")

    def test_suggestion_limit_default(self, db, project, repository, add_commit, at):
        _, upstream = repository
        for index in range(5):
            add_commit(upstream, f"user{index}@corp.com", at(2024, 3, 1), [("a.py", 1, 0)])

        resolver = IdentityResolver(db, suggestion_limit=3)

        assert len(resolver.suggest_emails(project.id, "user")) == 3
