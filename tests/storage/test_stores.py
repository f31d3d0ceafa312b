"""Tests for the project, activity and statistics stores."""

from datetime import date

import pytest

from gitscope.errors import InvalidInputError, NotFoundError
from gitscope.models.database import PeopleStatistics
from gitscope.utils.date_utils import Grain


class TestProjectStore:
    def test_create_project_seeds_default_settings(self, projects):
        project = projects.create_project("  Platform  ", "owner-1")

        assert project.name == "Platform"
        weights = projects.get_score_settings(project.id)
        assert (weights.additions, weights.deletions, weights.commits) == (1, 3, 10)
        assert (weights.pull_requests, weights.comments) == (20, 100)
        update = projects.get_update_settings(project.id)
        assert update.auto_update_enabled is False
        assert projects.get_working_hours(project.id) is None

    @pytest.mark.parametrize("name,owner", [("", "owner-1"), ("   ", "owner-1"), ("Name", "")])
    def test_create_project_rejects_blank_fields(self, projects, name, owner):
        with pytest.raises(InvalidInputError):
            projects.create_project(name, owner)

    def test_list_projects_filters_by_owner(self, projects):
        projects.create_project("A", "owner-1")
        projects.create_project("B", "owner-2")

        assert [p.name for p in projects.list_projects("owner-2")] == ["B"]
        assert len(projects.list_projects()) == 2

    def test_get_unknown_project(self, projects):
        with pytest.raises(NotFoundError):
            projects.get_project("missing")

    def test_add_repository_is_idempotent(self, projects, project, repository):
        membership, upstream = repository

        again = projects.add_repository(project.id, upstream.github_repo_id)

        assert again.id == membership.id
        assert len(projects.list_repositories(project.id)) == 1

    def test_add_unknown_repository(self, projects, project):
        with pytest.raises(NotFoundError):
            projects.add_repository(project.id, 424242)

    def test_upsert_requires_owner_and_name(self, projects):
        with pytest.raises(InvalidInputError):
            projects.upsert_github_repository(1, "just-a-name", "https://example.invalid/x.git")

    def test_upsert_refreshes_shared_record(self, projects, repository):
        _, upstream = repository

        refreshed = projects.upsert_github_repository(
            upstream.github_repo_id, "acme/api-renamed", upstream.clone_url, "develop"
        )

        assert refreshed.id == upstream.id
        assert refreshed.full_name == "acme/api-renamed"
        assert refreshed.default_branch == "develop"

    def test_tracked_only_listing(self, projects, project, make_repository):
        tracked, _ = make_repository(project.id)
        untracked, _ = make_repository(project.id, tracked=False)

        listed = projects.list_repositories(project.id, tracked_only=True)
        assert [r.id for r in listed] == [tracked.id]

        projects.set_tracked(untracked.id, True)
        assert len(projects.list_repositories(project.id, tracked_only=True)) == 2

    def test_same_upstream_in_two_projects(self, projects, make_repository):
        first = projects.create_project("First", "owner-1")
        second = projects.create_project("Second", "owner-1")
        a, upstream = make_repository(first.id, "acme/shared", github_repo_id=77)

        b = projects.add_repository(second.id, 77)

        assert a.id != b.id
        pair = projects.get_repository_pair(b.id)
        assert pair[1].id == upstream.id

    def test_exclusion_filters_are_normalized(self, projects, project):
        projects.add_excluded_extension(project.id, "MD")
        projects.add_excluded_extension(project.id, ".md")
        projects.add_excluded_folder(project.id, "./vendor/")

        assert projects.list_excluded_extensions(project.id) == [".md"]
        assert projects.list_excluded_folders(project.id) == ["vendor"]

        assert projects.remove_excluded_extension(project.id, "md") is True
        assert projects.remove_excluded_extension(project.id, "md") is False
        with pytest.raises(InvalidInputError):
            projects.add_excluded_folder(project.id, " / ")

    def test_score_weight_validation(self, projects, project):
        updated = projects.update_score_settings(project.id, comments=5)
        assert updated.comments == 5

        with pytest.raises(InvalidInputError):
            projects.update_score_settings(project.id, stars=1)
        with pytest.raises(InvalidInputError):
            projects.update_score_settings(project.id, commits=-1)
        with pytest.raises(InvalidInputError):
            projects.update_score_settings(project.id, commits=True)

    def test_working_hours_round_trip(self, projects, project):
        settings = projects.set_working_hours(project.id, 8, 17, [0, 2, 4])

        assert settings.enabled_weekdays() == {0, 2, 4}
        projects.clear_working_hours(project.id)
        assert projects.get_working_hours(project.id) is None

    @pytest.mark.parametrize(
        "start,end,days",
        [(9, 9, [0]), (18, 9, [0]), (-1, 9, [0]), (9, 24, [0]), (9, 17, []), (9, 17, [7])],
    )
    def test_working_hours_validation(self, projects, project, start, end, days):
        with pytest.raises(InvalidInputError):
            projects.set_working_hours(project.id, start, end, days)

    def test_projects_due_for_update(self, projects):
        early = projects.create_project("Early", "owner-1")
        late = projects.create_project("Late", "owner-1")
        off = projects.create_project("Off", "owner-1")
        projects.set_update_settings(early.id, True, 3)
        projects.set_update_settings(late.id, True, 22)
        projects.set_update_settings(off.id, False, 3)

        assert projects.projects_due_for_update(3) == [early.id]
        with pytest.raises(InvalidInputError):
            projects.set_update_settings(early.id, True, 24)

    def test_delete_project_removes_owned_rows(
        self, projects, jobs, identity, statistics, project, repository, add_account, add_commit, at
    ):
        membership, upstream = repository
        add_commit(upstream, "a@x.com", at(2024, 3, 11, 10), [("a.py", 1, 0)])
        account = add_account("alice")
        identity.associate(project.id, account.id, "a@x.com")
        projects.add_excluded_extension(project.id, "md")
        jobs.create_chain(project.id, membership.id)

        projects.delete_project(project.id)

        with pytest.raises(NotFoundError):
            projects.get_project(project.id)
        assert jobs.by_project(project.id) == []
        assert statistics.totals(project.id) == []
        # Shared upstream data survives
        assert projects.get_github_repository(upstream.github_repo_id).id == upstream.id


class TestActivityStore:
    def test_duplicate_sha_is_skipped(self, activity, repository, add_commit, at):
        _, upstream = repository
        add_commit(upstream, "a@x.com", at(2024, 3, 11, 10), [("a.py", 3, 1)], sha="a" * 40)
        add_commit(upstream, "a@x.com", at(2024, 3, 11, 10), [("a.py", 3, 1)], sha="a" * 40)

        assert activity.commit_count(upstream.id) == 1
        assert activity.commit_file_count(upstream.id) == 1

    def test_mark_cloned_updates_every_membership(self, projects, activity, make_repository):
        first = projects.create_project("First", "owner-1")
        second = projects.create_project("Second", "owner-1")
        a, upstream = make_repository(first.id, "acme/shared", github_repo_id=88)
        b = projects.add_repository(second.id, 88)

        activity.mark_cloned(upstream.id, "/work/acme/shared", "f" * 40)

        assert projects.get_project_repository(a.id).is_cloned is True
        assert projects.get_project_repository(b.id).is_cloned is True
        repo = activity.get_repository(upstream.id)
        assert repo.local_path == "/work/acme/shared"
        assert repo.head_sha == "f" * 40

        activity.mark_not_cloned(upstream.id)
        assert projects.get_project_repository(b.id).is_cloned is False

    def test_account_is_refreshed_on_rename(self, activity, add_account):
        first = add_account("old-login", github_user_id=9)
        renamed = add_account("new-login", github_user_id=9)

        assert renamed.id == first.id
        assert renamed.username == "new-login"

    def test_pull_request_upsert_by_number(
        self, activity, repository, add_account, add_pull_request, at
    ):
        _, upstream = repository
        author = add_account("alice")
        reviewer = add_account("bob")

        reviews = [(reviewer, "approved", True, at(2024, 3, 12))]

        add_pull_request(upstream, author, at(2024, 3, 11), reviews=reviews, number=7)
        add_pull_request(upstream, author, at(2024, 3, 11), reviews=reviews, number=7)

        assert activity.pull_request_count(upstream.id) == 1
        assert activity.review_count(upstream.id) == 1

    def test_unknown_repository(self, activity):
        with pytest.raises(NotFoundError):
            activity.get_repository("missing")


class TestStatisticsStore:
    def _row(self, project, membership, person, day, score, commits=1):
        return PeopleStatistics(
            id=f"{person.id}-{day.isoformat()}",
            project_id=project.id,
            repository_id=membership.id,
            github_person_id=person.id,
            stat_date=day,
            commits=commits,
            score=score,
        )

    def test_replace_swaps_rows(self, statistics, project, repository, add_account):
        membership, _ = repository
        alice = add_account("alice")
        statistics.replace_repository_rows(
            project.id, membership.id, [self._row(project, membership, alice, date(2024, 3, 11), 10)]
        )

        written = statistics.replace_repository_rows(
            project.id, membership.id, [self._row(project, membership, alice, date(2024, 3, 12), 30)]
        )

        rows = statistics.rows_for_repository(project.id, membership.id)
        assert written == 1
        assert [r.stat_date for r in rows] == [date(2024, 3, 12)]

    def test_failing_hook_keeps_previous_rows(self, statistics, project, repository, add_account):
        membership, _ = repository
        alice = add_account("alice")
        statistics.replace_repository_rows(
            project.id, membership.id, [self._row(project, membership, alice, date(2024, 3, 11), 10)]
        )

        def abort():
            raise RuntimeError("stop")

        with pytest.raises(RuntimeError):
            statistics.replace_repository_rows(project.id, membership.id, [], before_commit=abort)

        assert len(statistics.rows_for_repository(project.id, membership.id)) == 1

    def test_totals_order_and_range(self, statistics, project, repository, add_account):
        membership, _ = repository
        alice = add_account("alice")
        bob = add_account("Bob")
        carol = add_account("carol")
        statistics.replace_repository_rows(
            project.id,
            membership.id,
            [
                self._row(project, membership, alice, date(2024, 3, 11), 10),
                self._row(project, membership, alice, date(2024, 4, 1), 30),
                self._row(project, membership, bob, date(2024, 3, 12), 50),
                self._row(project, membership, carol, date(2024, 3, 13), 50),
            ],
        )

        everything = statistics.totals(project.id)
        assert [t.username for t in everything] == ["Bob", "carol", "alice"]
        assert everything[2].commits == 2

        march = statistics.totals(project.id, (date(2024, 3, 1), date(2024, 3, 31)))
        assert {t.username: t.score for t in march} == {"Bob": 50, "carol": 50, "alice": 10}

    def test_rows_for_person(self, statistics, project, make_repository, add_account):
        api, _ = make_repository(project.id, "acme/api")
        web, _ = make_repository(project.id, "acme/web")
        alice = add_account("alice")
        bob = add_account("bob")
        statistics.replace_repository_rows(
            project.id,
            api.id,
            [
                self._row(project, api, alice, date(2024, 3, 12), 10),
                self._row(project, api, bob, date(2024, 3, 11), 5),
            ],
        )
        statistics.replace_repository_rows(
            project.id, web.id, [self._row(project, web, alice, date(2024, 3, 1), 7)]
        )

        rows = statistics.rows_for_person(project.id, alice.id)

        assert [(row.stat_date, row.repository_id) for row in rows] == [
            (date(2024, 3, 1), web.id),
            (date(2024, 3, 12), api.id),
        ]
        assert statistics.rows_for_person(project.id, "missing") == []

    def test_available_periods(self, statistics, project, repository, add_account):
        membership, _ = repository
        alice = add_account("alice")
        statistics.replace_repository_rows(
            project.id,
            membership.id,
            [
                self._row(project, membership, alice, date(2024, 3, 11), 10),
                self._row(project, membership, alice, date(2024, 4, 1), 10),
            ],
        )

        assert statistics.available_periods(project.id, Grain.MONTH) == ["2024-04", "2024-03"]
        assert statistics.available_periods(project.id, Grain.ALL) == []
