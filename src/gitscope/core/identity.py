"""Identity resolution for a project.

Two mechanisms connect commit authors to platform accounts:

- **Email merges** form a directed graph inside a project. Each source email
  has at most one target; cycles are rejected on insert, so following targets
  always terminates at a canonical email.
- **Associations** bind a platform account (:class:`GithubPerson`) to a
  :class:`Person` identified by an email. Statistics attribute a commit to an
  account when the commit email and the person's email resolve to the same
  canonical email.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..models.database import (
    Commit,
    Database,
    EmailMerge,
    GithubPerson,
    GithubPersonEmail,
    GithubRepository,
    Person,
    Project,
    ProjectRepository,
    PRReview,
    PullRequest,
    ensure_utc,
)
from .text_similarity import EmailSuggestion, rank_emails

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address.

    Raises:
        InvalidInputError: If the value is not an email address
    """
    normalized = (email or "").strip().lower()
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise InvalidInputError(f"'{email}' is not an email address")
    return normalized


def merge_closure(edges: dict[str, str]) -> dict[str, str]:
    """Map every source email to the end of its merge chain.

    A chain that revisits an email stops at the last email before the repeat,
    so the walk terminates even on data that bypassed insert-time checks.
    """
    resolved: dict[str, str] = {}
    for source in edges:
        seen = {source}
        current = edges[source]
        while current in edges and current not in seen:
            seen.add(current)
            current = edges[current]
        resolved[source] = current
    return resolved


@dataclass(frozen=True)
class EmailOverview:
    """An email seen in commits, with merges applied."""

    email: str
    commit_count: int
    first_commit: Optional[datetime]
    last_commit: Optional[datetime]
    merged_emails: tuple[str, ...]
    bound: bool


@dataclass(frozen=True)
class PlatformAccount:
    """A platform account observed on a project's pull requests or reviews."""

    github_person_id: str
    username: str
    type: str
    bound_email: Optional[str]


class IdentityResolver:
    """Email merges, account associations and association suggestions."""

    def __init__(self, db: Database, suggestion_limit: int = 10):
        self.db = db
        self.suggestion_limit = suggestion_limit

    # -- merges -------------------------------------------------------------

    def merged_emails_for_project(self, project_id: str) -> dict[str, str]:
        """Return ``{source_email: ultimate_target}`` for the project."""
        with self.db.session_scope() as session:
            return merge_closure(self._merge_edges(session, project_id))

    def resolve_email(self, project_id: str, email: str) -> str:
        """Follow merges from ``email`` to its canonical email."""
        normalized = normalize_email(email)
        return self.merged_emails_for_project(project_id).get(normalized, normalized)

    def canonical_emails(self, project_id: str) -> set[str]:
        """Emails seen in the project's commits that are not merge sources."""
        with self.db.session_scope() as session:
            edges = self._merge_edges(session, project_id)
            seen = {email for email, *_ in self._commit_email_rows(session, project_id)}
        return {email for email in seen if email not in edges}

    def list_merges(self, project_id: str) -> list[EmailMerge]:
        with self.db.session_scope() as session:
            return (
                session.query(EmailMerge)
                .filter(EmailMerge.project_id == project_id)
                .order_by(EmailMerge.source_email.asc())
                .all()
            )

    def create_merge(self, project_id: str, source_email: str, target_email: str) -> EmailMerge:
        """Merge ``source_email`` into ``target_email`` within a project.

        Raises:
            InvalidInputError: If the emails are malformed or identical
            ConflictError: If the source already has a merge or the merge closes a cycle
        """
        source = normalize_email(source_email)
        target = normalize_email(target_email)
        if source == target:
            raise InvalidInputError("an email cannot be merged into itself")

        try:
            with self.db.session_scope() as session:
                self._require_project(session, project_id)
                edges = self._merge_edges(session, project_id)
                if source in edges:
                    raise ConflictError(
                        f"{source} is already merged into {edges[source]} in this project"
                    )

                current = target
                visited = {target}
                while current in edges:
                    current = edges[current]
                    if current == source or current in visited:
                        raise ConflictError(
                            f"merging {source} into {target} would create a cycle"
                        )
                    visited.add(current)

                merge = EmailMerge(project_id=project_id, source_email=source, target_email=target)
                session.add(merge)
                session.flush()
        except IntegrityError as e:
            raise ConflictError(f"{source} is already merged in this project") from e

        logger.info(f"Project {project_id}: merged {source} into {target}")
        return merge

    def delete_merge(self, project_id: str, source_email: str) -> bool:
        source = normalize_email(source_email)
        with self.db.session_scope() as session:
            deleted = (
                session.query(EmailMerge)
                .filter(EmailMerge.project_id == project_id, EmailMerge.source_email == source)
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info(f"Project {project_id}: removed merge of {source}")
        return deleted > 0

    # -- associations -------------------------------------------------------

    def get_or_create_person(self, email: str, name: str = "") -> Person:
        """Return the canonical Person for ``email``, creating it when missing."""
        normalized = normalize_email(email)
        try:
            with self.db.session_scope() as session:
                return self._get_or_create_person(session, normalized, name)
        except IntegrityError:
            with self.db.session_scope() as session:
                return self._get_or_create_person(session, normalized, name)

    def associate(
        self, project_id: str, github_person_id: str, email: str, name: str = ""
    ) -> GithubPersonEmail:
        """Bind a platform account to the person behind ``email`` in a project.

        Raises:
            NotFoundError: If the project or account does not exist
            ConflictError: If the account, or the person, is already bound in the project
        """
        normalized = normalize_email(email)
        try:
            with self.db.session_scope() as session:
                self._require_project(session, project_id)
                account = session.get(GithubPerson, github_person_id)
                if account is None:
                    raise NotFoundError(f"github person {github_person_id} not found")

                existing = (
                    session.query(GithubPersonEmail)
                    .filter(
                        GithubPersonEmail.project_id == project_id,
                        GithubPersonEmail.github_person_id == github_person_id,
                    )
                    .one_or_none()
                )
                if existing is not None:
                    raise ConflictError(f"{account.username} is already associated in this project")

                person = self._get_or_create_person(session, normalized, name)
                taken = (
                    session.query(GithubPersonEmail)
                    .filter(
                        GithubPersonEmail.project_id == project_id,
                        GithubPersonEmail.person_id == person.id,
                    )
                    .one_or_none()
                )
                if taken is not None:
                    raise ConflictError(
                        f"{normalized} is already associated with another account in this project"
                    )

                binding = GithubPersonEmail(
                    project_id=project_id, github_person_id=github_person_id, person_id=person.id
                )
                session.add(binding)
                session.flush()
        except IntegrityError as e:
            raise ConflictError("association already exists in this project") from e

        logger.info(f"Project {project_id}: associated {account.username} with {normalized}")
        return binding

    def associate_by_username(self, project_id: str, username: str, email: str) -> GithubPersonEmail:
        """Associate using a platform login instead of an account id."""
        with self.db.session_scope() as session:
            account = (
                session.query(GithubPerson)
                .filter(func.lower(GithubPerson.username) == username.strip().lower())
                .order_by(GithubPerson.github_user_id.asc())
                .first()
            )
            if account is None:
                raise NotFoundError(f"no platform account named '{username}' has been seen")
            account_id = account.id
        return self.associate(project_id, account_id, email)

    def dissociate(self, project_id: str, github_person_id: str) -> bool:
        with self.db.session_scope() as session:
            deleted = (
                session.query(GithubPersonEmail)
                .filter(
                    GithubPersonEmail.project_id == project_id,
                    GithubPersonEmail.github_person_id == github_person_id,
                )
                .delete(synchronize_session=False)
            )
        return deleted > 0

    def has_associations(self, project_id: str) -> bool:
        with self.db.session_scope() as session:
            return (
                session.query(GithubPersonEmail.id)
                .filter(GithubPersonEmail.project_id == project_id)
                .first()
                is not None
            )

    def bindings(self, project_id: str) -> dict[str, str]:
        """Return ``{github_person_id: person primary email}`` for the project."""
        with self.db.session_scope() as session:
            return self._bindings(session, project_id)

    def account_emails(self, project_id: str, github_person_id: str) -> set[str]:
        """Commit emails attributed to an account: its canonical email and every merge source of it.

        Returns an empty set when the account has no association in the project.
        """
        with self.db.session_scope() as session:
            primary = self._bindings(session, project_id).get(github_person_id)
            if primary is None:
                return set()
            closure = merge_closure(self._merge_edges(session, project_id))
        canonical = closure.get(primary, primary)
        emails = {primary, canonical}
        emails.update(source for source, target in closure.items() if target == canonical)
        return emails

    # -- operator views -----------------------------------------------------

    def email_overview(self, project_id: str) -> list[EmailOverview]:
        """List commit emails with merges applied, most active first."""
        with self.db.session_scope() as session:
            self._require_project(session, project_id)
            closure = merge_closure(self._merge_edges(session, project_id))
            rows = self._commit_email_rows(session, project_id)
            bound = {closure.get(e, e) for e in self._bindings(session, project_id).values()}

        grouped: dict[str, dict] = {}
        for email, count, first, last in rows:
            target = closure.get(email, email)
            entry = grouped.setdefault(
                target, {"count": 0, "first": None, "last": None, "merged": set()}
            )
            entry["count"] += count
            first, last = ensure_utc(first), ensure_utc(last)
            if first is not None and (entry["first"] is None or first < entry["first"]):
                entry["first"] = first
            if last is not None and (entry["last"] is None or last > entry["last"]):
                entry["last"] = last
            if email != target:
                entry["merged"].add(email)

        overview = [
            EmailOverview(
                email=email,
                commit_count=entry["count"],
                first_commit=entry["first"],
                last_commit=entry["last"],
                merged_emails=tuple(sorted(entry["merged"])),
                bound=email in bound,
            )
            for email, entry in grouped.items()
        ]
        overview.sort(key=lambda o: (-o.commit_count, o.email))
        return overview

    def platform_accounts(self, project_id: str) -> list[PlatformAccount]:
        """Accounts seen as pull request authors or reviewers on the project's repositories."""
        with self.db.session_scope() as session:
            repo_ids = self._github_repository_ids(session, project_id)
            if not repo_ids:
                return []

            author_ids = {
                row.user_id
                for row in session.query(PullRequest.user_id)
                .filter(PullRequest.repository_id.in_(repo_ids), PullRequest.user_id.isnot(None))
                .distinct()
            }
            logins = {
                row.login.lower()
                for row in session.query(PullRequest.user.label("login"))
                .filter(PullRequest.repository_id.in_(repo_ids))
                .distinct()
            }
            logins |= {
                row.reviewer_login.lower()
                for row in session.query(PRReview.reviewer_login)
                .filter(PRReview.repository_id.in_(repo_ids))
                .distinct()
            }

            conditions = []
            if author_ids:
                conditions.append(GithubPerson.github_user_id.in_(author_ids))
            if logins:
                conditions.append(func.lower(GithubPerson.username).in_(logins))
            if not conditions:
                return []
            accounts = session.query(GithubPerson).filter(or_(*conditions)).all()
            bindings = self._bindings(session, project_id)

        result = [
            PlatformAccount(
                github_person_id=account.id,
                username=account.username,
                type=account.type,
                bound_email=bindings.get(account.id),
            )
            for account in accounts
        ]
        result.sort(key=lambda a: (a.username.lower(), a.github_person_id))
        return result

    def suggest_emails(
        self, project_id: str, username: str, limit: Optional[int] = None
    ) -> list[EmailSuggestion]:
        """Rank unbound canonical commit emails by similarity to ``username``."""
        if not (username or "").strip():
            raise InvalidInputError("username must not be empty")
        with self.db.session_scope() as session:
            closure = merge_closure(self._merge_edges(session, project_id))
            candidates = {
                closure.get(email, email) for email, *_ in self._commit_email_rows(session, project_id)
            }
            bound = {closure.get(e, e) for e in self._bindings(session, project_id).values()}
        return rank_emails(
            username, candidates - bound, limit=self.suggestion_limit if limit is None else limit
        )

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _merge_edges(session: Session, project_id: str) -> dict[str, str]:
        rows = (
            session.query(EmailMerge.source_email, EmailMerge.target_email)
            .filter(EmailMerge.project_id == project_id)
            .all()
        )
        return {row.source_email: row.target_email for row in rows}

    @staticmethod
    def _bindings(session: Session, project_id: str) -> dict[str, str]:
        rows = (
            session.query(GithubPersonEmail.github_person_id, Person.primary_email)
            .join(Person, Person.id == GithubPersonEmail.person_id)
            .filter(GithubPersonEmail.project_id == project_id)
            .all()
        )
        return {row.github_person_id: row.primary_email for row in rows}

    @staticmethod
    def _github_repository_ids(session: Session, project_id: str) -> list[str]:
        rows = (
            session.query(GithubRepository.id)
            .join(
                ProjectRepository,
                ProjectRepository.github_repo_id == GithubRepository.github_repo_id,
            )
            .filter(ProjectRepository.project_id == project_id)
            .all()
        )
        return [row.id for row in rows]

    def _commit_email_rows(
        self, session: Session, project_id: str
    ) -> list[tuple[str, int, Optional[datetime], Optional[datetime]]]:
        repo_ids = self._github_repository_ids(session, project_id)
        if not repo_ids:
            return []
        email = func.lower(func.trim(Commit.author_email))
        rows = (
            session.query(
                email.label("email"),
                func.count(Commit.id),
                func.min(Commit.commit_date),
                func.max(Commit.commit_date),
            )
            .filter(Commit.github_repository_id.in_(repo_ids))
            .group_by(email)
            .all()
        )
        return [(row[0], int(row[1]), row[2], row[3]) for row in rows if row[0]]

    @staticmethod
    def _get_or_create_person(session: Session, email: str, name: str) -> Person:
        person = session.query(Person).filter(Person.primary_email == email).one_or_none()
        if person is None:
            person = Person(primary_email=email, name=name or email.split("@", 1)[0])
            session.add(person)
            session.flush()
        return person

    @staticmethod
    def _require_project(session: Session, project_id: str) -> Project:
        project = session.get(Project, project_id)
        if project is None:
            raise NotFoundError(f"project {project_id} not found")
        return project
