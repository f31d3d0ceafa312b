"""Projects, repository membership and per-project settings."""

import logging
from collections.abc import Iterable
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..models.database import (
    Database,
    EmailMerge,
    ExcludedExtension,
    ExcludedFolder,
    GithubPersonEmail,
    GithubRepository,
    Job,
    PeopleStatistics,
    Project,
    ProjectRepository,
    ProjectUpdateSettings,
    ScoreSettings,
    WorkingHoursSettings,
    utcnow_tz_aware,
)
from ..utils.path_filters import normalize_extension, normalize_folder

logger = logging.getLogger(__name__)

SCORE_FIELDS = ("additions", "deletions", "commits", "pull_requests", "comments")


class ProjectStore:
    """CRUD for projects and everything a project exclusively owns."""

    def __init__(self, db: Database):
        self.db = db

    # -- projects -----------------------------------------------------------

    def create_project(self, name: str, owner_id: str) -> Project:
        """Create a project together with its default score weights."""
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("project name must not be empty")
        if not owner_id:
            raise InvalidInputError("project owner must not be empty")

        with self.db.session_scope() as session:
            project = Project(name=name, owner_id=owner_id)
            session.add(project)
            session.flush()
            session.add(ScoreSettings(project_id=project.id))
            session.add(ProjectUpdateSettings(project_id=project.id))
        logger.info(f"Created project {project.id} ({name})")
        return project

    def get_project(self, project_id: str) -> Project:
        with self.db.session_scope() as session:
            return self._require_project(session, project_id)

    def list_projects(self, owner_id: Optional[str] = None) -> list[Project]:
        with self.db.session_scope() as session:
            query = session.query(Project)
            if owner_id is not None:
                query = query.filter(Project.owner_id == owner_id)
            return query.order_by(Project.created_at.asc(), Project.id.asc()).all()

    def delete_project(self, project_id: str) -> None:
        """Delete a project and everything it owns in one transaction."""
        with self.db.session_scope() as session:
            self._require_project(session, project_id)
            for model in (PeopleStatistics, GithubPersonEmail, EmailMerge):
                session.query(model).filter(model.project_id == project_id).delete(
                    synchronize_session=False
                )
            # Break dependency edges before removing jobs
            session.query(Job).filter(Job.project_id == project_id).update(
                {Job.depends_on: None}, synchronize_session=False
            )
            for model in (
                Job,
                ExcludedExtension,
                ExcludedFolder,
                ScoreSettings,
                WorkingHoursSettings,
                ProjectUpdateSettings,
                ProjectRepository,
            ):
                session.query(model).filter(model.project_id == project_id).delete(
                    synchronize_session=False
                )
            session.query(Project).filter(Project.id == project_id).delete(
                synchronize_session=False
            )
        logger.info(f"Deleted project {project_id}")

    # -- repositories -------------------------------------------------------

    def upsert_github_repository(
        self,
        github_repo_id: int,
        full_name: str,
        clone_url: str,
        default_branch: str = "main",
        is_private: bool = False,
    ) -> GithubRepository:
        """Insert or refresh the shared record of an upstream repository."""
        if "/" not in (full_name or ""):
            raise InvalidInputError(f"repository name must be owner/repo, got '{full_name}'")

        with self.db.session_scope() as session:
            repo = (
                session.query(GithubRepository)
                .filter(GithubRepository.github_repo_id == github_repo_id)
                .one_or_none()
            )
            if repo is None:
                repo = GithubRepository(github_repo_id=github_repo_id)
                session.add(repo)
            repo.full_name = full_name
            repo.clone_url = clone_url
            repo.default_branch = default_branch or "main"
            repo.is_private = is_private
            session.flush()
            return repo

    def get_github_repository(self, github_repo_id: int) -> GithubRepository:
        with self.db.session_scope() as session:
            repo = (
                session.query(GithubRepository)
                .filter(GithubRepository.github_repo_id == github_repo_id)
                .one_or_none()
            )
            if repo is None:
                raise NotFoundError(f"github repository {github_repo_id} not found")
            return repo

    def add_repository(
        self, project_id: str, github_repo_id: int, tracked: bool = True
    ) -> ProjectRepository:
        """Attach an upstream repository to a project (idempotent)."""
        try:
            with self.db.session_scope() as session:
                self._require_project(session, project_id)
                github_repo = (
                    session.query(GithubRepository)
                    .filter(GithubRepository.github_repo_id == github_repo_id)
                    .one_or_none()
                )
                if github_repo is None:
                    raise NotFoundError(f"github repository {github_repo_id} not found")

                existing = (
                    session.query(ProjectRepository)
                    .filter(
                        ProjectRepository.project_id == project_id,
                        ProjectRepository.github_repo_id == github_repo_id,
                    )
                    .one_or_none()
                )
                if existing is not None:
                    return existing

                membership = ProjectRepository(
                    project_id=project_id,
                    github_repo_id=github_repo_id,
                    is_tracked=tracked,
                    is_cloned=bool(github_repo.is_cloned),
                )
                session.add(membership)
                session.flush()
                return membership
        except IntegrityError as e:
            raise ConflictError(
                f"repository {github_repo_id} is already part of project {project_id}"
            ) from e

    def get_project_repository(self, project_repo_id: str) -> ProjectRepository:
        with self.db.session_scope() as session:
            return self._require_project_repository(session, project_repo_id)

    def get_repository_pair(
        self, project_repo_id: str
    ) -> tuple[ProjectRepository, GithubRepository]:
        """Return a project repository together with its shared upstream record."""
        with self.db.session_scope() as session:
            membership = self._require_project_repository(session, project_repo_id)
            github_repo = (
                session.query(GithubRepository)
                .filter(GithubRepository.github_repo_id == membership.github_repo_id)
                .one()
            )
            return membership, github_repo

    def list_repositories(
        self, project_id: str, tracked_only: bool = False
    ) -> list[ProjectRepository]:
        with self.db.session_scope() as session:
            query = session.query(ProjectRepository).filter(
                ProjectRepository.project_id == project_id
            )
            if tracked_only:
                query = query.filter(ProjectRepository.is_tracked.is_(True))
            return query.order_by(
                ProjectRepository.created_at.asc(), ProjectRepository.id.asc()
            ).all()

    def set_tracked(self, project_repo_id: str, tracked: bool) -> ProjectRepository:
        with self.db.session_scope() as session:
            membership = self._require_project_repository(session, project_repo_id)
            membership.is_tracked = tracked
            return membership

    def touch_fetched(self, project_repo_id: str) -> None:
        self._touch(project_repo_id, "last_fetched_at")

    def touch_analyzed(self, project_repo_id: str) -> None:
        self._touch(project_repo_id, "last_analyzed_at")

    def _touch(self, project_repo_id: str, column: str) -> None:
        with self.db.session_scope() as session:
            session.query(ProjectRepository).filter(ProjectRepository.id == project_repo_id).update(
                {getattr(ProjectRepository, column): utcnow_tz_aware()},
                synchronize_session=False,
            )

    # -- exclusion filters --------------------------------------------------

    def add_excluded_extension(self, project_id: str, value: str) -> ExcludedExtension:
        try:
            normalized = normalize_extension(value)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        return self._add_filter(ExcludedExtension, project_id, normalized)

    def add_excluded_folder(self, project_id: str, value: str) -> ExcludedFolder:
        try:
            normalized = normalize_folder(value)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        return self._add_filter(ExcludedFolder, project_id, normalized)

    def remove_excluded_extension(self, project_id: str, value: str) -> bool:
        try:
            normalized = normalize_extension(value)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        return self._remove_filter(ExcludedExtension, project_id, normalized)

    def remove_excluded_folder(self, project_id: str, value: str) -> bool:
        try:
            normalized = normalize_folder(value)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        return self._remove_filter(ExcludedFolder, project_id, normalized)

    def list_excluded_extensions(self, project_id: str) -> list[str]:
        with self.db.session_scope() as session:
            return self._filter_values(session, ExcludedExtension, project_id)

    def list_excluded_folders(self, project_id: str) -> list[str]:
        with self.db.session_scope() as session:
            return self._filter_values(session, ExcludedFolder, project_id)

    def _add_filter(self, model, project_id: str, value: str):
        with self.db.session_scope() as session:
            self._require_project(session, project_id)
            existing = (
                session.query(model)
                .filter(model.project_id == project_id, model.value == value)
                .one_or_none()
            )
            if existing is not None:
                return existing
            row = model(project_id=project_id, value=value)
            session.add(row)
            session.flush()
            return row

    def _remove_filter(self, model, project_id: str, value: str) -> bool:
        with self.db.session_scope() as session:
            deleted = (
                session.query(model)
                .filter(model.project_id == project_id, model.value == value)
                .delete(synchronize_session=False)
            )
            return deleted > 0

    @staticmethod
    def _filter_values(session: Session, model, project_id: str) -> list[str]:
        rows = (
            session.query(model.value)
            .filter(model.project_id == project_id)
            .order_by(model.value.asc())
            .all()
        )
        return [row.value for row in rows]

    # -- settings -----------------------------------------------------------

    def get_score_settings(self, project_id: str) -> ScoreSettings:
        """Return the project's score weights, creating defaults when missing."""
        with self.db.session_scope() as session:
            return self._score_settings(session, project_id)

    def update_score_settings(self, project_id: str, **weights: int) -> ScoreSettings:
        unknown = set(weights) - set(SCORE_FIELDS)
        if unknown:
            raise InvalidInputError(f"unknown score weights: {', '.join(sorted(unknown))}")
        for name, value in weights.items():
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise InvalidInputError(f"score weight '{name}' must be a non-negative integer")

        with self.db.session_scope() as session:
            settings = self._score_settings(session, project_id)
            for name, value in weights.items():
                setattr(settings, name, value)
            return settings

    def _score_settings(self, session: Session, project_id: str) -> ScoreSettings:
        self._require_project(session, project_id)
        settings = session.get(ScoreSettings, project_id)
        if settings is None:
            settings = ScoreSettings(
                project_id=project_id,
                additions=1,
                deletions=3,
                commits=10,
                pull_requests=20,
                comments=100,
            )
            session.add(settings)
            session.flush()
        return settings

    def get_working_hours(self, project_id: str) -> Optional[WorkingHoursSettings]:
        """Return the project's working-hours window, None when unrestricted."""
        with self.db.session_scope() as session:
            return session.get(WorkingHoursSettings, project_id)

    def set_working_hours(
        self, project_id: str, start_hour: int, end_hour: int, weekdays: Iterable[int]
    ) -> WorkingHoursSettings:
        """Store the working-hours window.

        Args:
            project_id: Project to configure
            start_hour: First included hour (0..23)
            end_hour: First excluded hour (0..23), greater than start_hour
            weekdays: Enabled days as ``datetime.weekday()`` numbers

        Raises:
            InvalidInputError: If the window is malformed
        """
        days = set(weekdays)
        for label, hour in (("start_hour", start_hour), ("end_hour", end_hour)):
            if not isinstance(hour, int) or not 0 <= hour <= 23:
                raise InvalidInputError(f"{label} must be between 0 and 23")
        if start_hour >= end_hour:
            raise InvalidInputError("start_hour must be before end_hour")
        if not days:
            raise InvalidInputError("at least one working day must be enabled")
        if not days <= set(range(7)):
            raise InvalidInputError("weekdays must be between 0 (Monday) and 6 (Sunday)")

        with self.db.session_scope() as session:
            self._require_project(session, project_id)
            settings = session.get(WorkingHoursSettings, project_id)
            if settings is None:
                settings = WorkingHoursSettings(project_id=project_id)
                session.add(settings)
            settings.start_hour = start_hour
            settings.end_hour = end_hour
            for index, column in enumerate(WorkingHoursSettings.DAY_COLUMNS):
                setattr(settings, column, index in days)
            session.flush()
            return settings

    def clear_working_hours(self, project_id: str) -> None:
        with self.db.session_scope() as session:
            session.query(WorkingHoursSettings).filter(
                WorkingHoursSettings.project_id == project_id
            ).delete(synchronize_session=False)

    def get_update_settings(self, project_id: str) -> ProjectUpdateSettings:
        with self.db.session_scope() as session:
            self._require_project(session, project_id)
            settings = session.get(ProjectUpdateSettings, project_id)
            if settings is None:
                settings = ProjectUpdateSettings(
                    project_id=project_id, auto_update_enabled=False, auto_update_hour=0
                )
                session.add(settings)
                session.flush()
            return settings

    def set_update_settings(self, project_id: str, enabled: bool, hour: int) -> ProjectUpdateSettings:
        if not isinstance(hour, int) or not 0 <= hour <= 23:
            raise InvalidInputError("auto_update_hour must be between 0 and 23")
        with self.db.session_scope() as session:
            self._require_project(session, project_id)
            settings = session.get(ProjectUpdateSettings, project_id)
            if settings is None:
                settings = ProjectUpdateSettings(project_id=project_id)
                session.add(settings)
            settings.auto_update_enabled = bool(enabled)
            settings.auto_update_hour = hour
            session.flush()
            return settings

    def projects_due_for_update(self, hour: int) -> list[str]:
        """Return ids of projects whose auto-update is enabled for ``hour``."""
        with self.db.session_scope() as session:
            rows = (
                session.query(ProjectUpdateSettings.project_id)
                .filter(
                    ProjectUpdateSettings.auto_update_enabled.is_(True),
                    ProjectUpdateSettings.auto_update_hour == hour,
                )
                .order_by(ProjectUpdateSettings.project_id.asc())
                .all()
            )
            return [row.project_id for row in rows]

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _require_project(session: Session, project_id: str) -> Project:
        project = session.get(Project, project_id)
        if project is None:
            raise NotFoundError(f"project {project_id} not found")
        return project

    @staticmethod
    def _require_project_repository(session: Session, project_repo_id: str) -> ProjectRepository:
        membership = session.get(ProjectRepository, project_repo_id)
        if membership is None:
            raise NotFoundError(f"project repository {project_repo_id} not found")
        return membership
