"""Tests for the per-person view: averages, history, highlights and indicators."""

from datetime import date

import pytest

from gitscope.core.person_stats import (
    MonthlyScore,
    PersonDetails,
    PersonStatsReader,
    WeeklyAverages,
    person_details,
    score_history,
    weekly_averages,
)
from gitscope.errors import NotFoundError
from gitscope.models.database import PeopleStatistics
from gitscope.utils.languages import language_for_path


def _row(day, additions=0, deletions=0, commits=0, prs=0, comments=0, score=0, repository="r1"):
    return PeopleStatistics(
        repository_id=repository,
        stat_date=day,
        additions=additions,
        deletions=deletions,
        commits=commits,
        prs_authored=prs,
        prs_reviewed=0,
        comments=comments,
        score=score,
    )


class TestDerivedFigures:
    def test_weekly_averages_span_first_to_last_day(self):
        rows = [_row(date(2024, 3, 1), commits=3, additions=9), _row(date(2024, 3, 15), commits=3)]

        averages = weekly_averages(rows)

        assert averages.commits == 2.0
        assert averages.additions == 3.0
        assert weekly_averages([]) == WeeklyAverages()

    def test_single_day_counts_as_one_week(self):
        assert weekly_averages([_row(date(2024, 3, 1), comments=4)]).comments == 4.0

    def test_score_history_fills_quiet_months(self):
        rows = [
            _row(date(2024, 1, 10), score=10),
            _row(date(2024, 1, 20), score=5),
            _row(date(2024, 3, 5), score=7),
        ]

        history = score_history(rows, today=date(2024, 4, 2))

        assert history == [
            MonthlyScore("2024-01", 15),
            MonthlyScore("2024-02", 0),
            MonthlyScore("2024-03", 7),
            MonthlyScore("2024-04", 0),
        ]
        assert score_history([], today=date(2024, 4, 2)) == []

    def test_score_history_crosses_year_boundary(self):
        history = score_history([_row(date(2023, 12, 30), score=1)], today=date(2024, 1, 3))

        assert [m.month for m in history] == ["2023-12", "2024-01"]

    def test_details(self):
        rows = [
            _row(date(2024, 1, 10), additions=30, deletions=10, commits=2, prs=1, comments=1, score=100),
            _row(date(2024, 3, 5), additions=10, commits=2, comments=1, score=150),
        ]

        details = person_details(rows)

        assert (details.commits, details.additions, details.deletions) == (4, 40, 10)
        assert details.peak_month == "2024-03"
        assert details.consistency == 66
        assert (details.first_activity, details.last_activity) == (date(2024, 1, 10), date(2024, 3, 5))
        assert details.active_days == 55
        assert details.commit_size == 12.5
        assert details.refactor_ratio == 20.0
        assert details.engagement == 1.5

    def test_details_without_activity(self):
        details = person_details([])

        assert details == PersonDetails()
        assert details.peak_month is None and details.commit_size is None

    def test_peak_month_tie_goes_to_the_earliest(self):
        rows = [_row(date(2024, 5, 1), score=50), _row(date(2024, 2, 1), score=50)]

        assert person_details(rows).peak_month == "2024-02"

    def test_review_only_activity_has_no_ratios(self):
        details = person_details([_row(date(2024, 5, 1), comments=2, score=200)])

        assert details.commit_size is None
        assert details.refactor_ratio is None
        assert details.engagement == 2.0
        assert details.consistency == 100


class TestLanguages:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("src/main.go", "Go"),
            ("web/App.TSX", "React"),
            ("dist/bundle.min.js", "JavaScript"),
            ("deploy/.dockerignore", "Docker"),
            ("Dockerfile", None),
            ("bin/tool", None),
            ("", None),
        ],
    )
    def test_language_for_path(self, path, expected):
        assert language_for_path(path) == expected


@pytest.fixture
def reader(db, statistics, identity):
    return PersonStatsReader(db, statistics, identity, clock=lambda: date(2024, 4, 15))


@pytest.fixture
def team(project, add_account, identity):
    alice = add_account("alice")
    bob = add_account("bob")
    carol = add_account("carol")
    identity.associate(project.id, alice.id, "a@x.com")
    identity.create_merge(project.id, "a@y.com", "a@x.com")
    return alice, bob, carol


@pytest.fixture
def activity_history(
    engine, project, make_repository, team, add_commit, add_pull_request, at
):
    """Two repositories with commits and pull requests by alice and others."""
    alice, bob, carol = team
    api, api_upstream = make_repository(project.id, "acme/api")
    web, web_upstream = make_repository(project.id, "acme/web")

    add_commit(api_upstream, "a@x.com", at(2024, 3, 11, 10), [("src/app.py", 10, 2), ("README.md", 5, 0)])
    add_commit(api_upstream, "A@Y.com", at(2024, 3, 12, 10), [("src/big.go", 100, 20)])
    add_commit(api_upstream, "a@x.com", at(2024, 3, 13, 10), [("src/merge.py", 900, 0)], is_merge=True)
    add_commit(api_upstream, "b@x.com", at(2024, 3, 13, 11), [("src/other.rs", 500, 0)])
    add_commit(
        web_upstream, "a@x.com", at(2024, 4, 1, 10), [("web/index.tsx", 40, 0), ("web/style.css", 3, 3)]
    )

    add_pull_request(
        web_upstream,
        alice,
        at(2024, 4, 2, 9),
        reviews=[(bob, "commented", True, at(2024, 4, 2, 12)), (carol, "approved", False, at(2024, 4, 3))],
    )
    add_pull_request(api_upstream, alice, at(2024, 3, 20, 9))
    add_pull_request(api_upstream, bob, at(2024, 3, 21, 9), reviews=[(alice, "commented", True, at(2024, 3, 22))])

    engine.compute_repository(project.id, api.id)
    engine.compute_repository(project.id, web.id)
    return api, web


class TestPersonReport:
    def test_report(self, reader, project, team, activity_history):
        alice = team[0]

        report = reader.report(project.id, "ALICE")

        assert report.github_person_id == alice.id
        assert report.username == "alice"
        assert report.details.commits == 3
        assert report.details.pull_requests == 2
        assert report.details.first_activity == date(2024, 3, 11)
        assert report.details.last_activity == date(2024, 4, 2)
        assert report.averages.commits == 0.75
        assert [m.month for m in report.score_history] == ["2024-03", "2024-04"]
        assert sum(m.score for m in report.score_history) == report.details.score

    def test_top_repositories_by_score(self, reader, project, team, activity_history):
        repositories = reader.top_repositories(project.id, team[0].id)

        assert [r.name for r in repositories] == ["acme/api", "acme/web"]
        assert repositories[0].score > repositories[1].score
        assert repositories[0].repository_id == activity_history[0].id

    def test_top_languages_follow_merged_emails(self, reader, project, team, activity_history):
        languages = reader.top_languages(project.id, team[0].id)

        assert [(s.language, s.changes) for s in languages] == [
            ("Go", 120),
            ("React", 40),
            ("Python", 12),
        ]

    def test_excluded_paths_do_not_count(self, reader, projects, project, team, activity_history):
        projects.add_excluded_extension(project.id, ".go")

        languages = reader.top_languages(project.id, team[0].id)
        commits = reader.top_commits(project.id, team[0].id)

        assert "Go" not in [s.language for s in languages]
        assert commits[0].changes == 46

    def test_top_commits_by_changed_lines(self, reader, project, team, activity_history):
        commits = reader.top_commits(project.id, team[0].id)

        assert [(c.repository, c.changes) for c in commits] == [
            ("acme/api", 120),
            ("acme/web", 46),
            ("acme/api", 17),
        ]
        assert commits[0].message == "change"
        assert commits[0].committed_at.tzinfo is not None

    def test_top_pull_requests_by_comments(self, reader, project, team, activity_history):
        pulls = reader.top_pull_requests(project.id, team[0].id)

        assert [(p.repository, p.comments) for p in pulls] == [("acme/web", 1), ("acme/api", 0)]
        assert all(p.title == "Improve things" for p in pulls)

    def test_account_without_association(self, reader, project, team, activity_history):
        carol = team[2]

        report = reader.report(project.id, carol.id)

        assert report.top_commits == []
        assert report.top_languages == []
        assert report.top_pull_requests == []
        assert report.details.commits == 0
        assert report.details.reviews == 1

    def test_unknown_account_or_project(self, reader, project):
        with pytest.raises(NotFoundError):
            reader.report(project.id, "nobody")
        with pytest.raises(NotFoundError):
            reader.report("missing", "nobody")
