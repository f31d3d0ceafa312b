"""Pull-request worker: mirror pull requests and reviews from GitHub."""

import dataclasses
import logging

from ..integrations.github_integration import GitHubFacade
from ..models.database import JobType
from ..storage.activity_store import ActivityStore
from ..storage.project_store import ProjectStore
from .base import BaseWorker, JobContext

logger = logging.getLogger(__name__)


class PullRequestWorker(BaseWorker):
    """Page through every pull request of a repository and upsert it with its reviews.

    Rate limiting and transient failures are retried inside the GitHub facade;
    whatever escapes it (a deleted repository, exhausted retries) fails the job.
    """

    job_type = JobType.PULL_REQUEST

    def __init__(
        self,
        jobs,
        projects: ProjectStore,
        activity: ActivityStore,
        github: GitHubFacade,
        **kwargs,
    ):
        super().__init__(jobs, **kwargs)
        self.projects = projects
        self.activity = activity
        self.github = github

    def process(self, ctx: JobContext) -> None:
        membership, repo = self.projects.get_repository_pair(ctx.job.project_repository_id)
        cancel = ctx.cancel_event

        comment_counts = self.github.review_comment_counts(repo.full_name, cancel_event=cancel)

        pr_total = 0
        review_total = 0
        cursor = None
        while True:
            ctx.check()
            page, cursor = self.github.list_pull_requests(
                repo.full_name, cursor=cursor, cancel_event=cancel
            )
            for pr in page:
                ctx.check()
                pr = dataclasses.replace(
                    pr, review_comments_count=comment_counts.get(pr.number, 0)
                )
                self.activity.get_or_create_github_person(pr.author)
                pr_id = self.activity.upsert_pull_request(repo.id, pr)
                pr_total += 1

                for review in self.github.list_reviews(repo.full_name, pr.number, cancel_event=cancel):
                    self.activity.get_or_create_github_person(review.reviewer)
                    self.activity.upsert_review(repo.id, pr_id, review)
                    review_total += 1
            if cursor is None:
                break

        self.projects.touch_fetched(membership.id)
        logger.info(
            f"{repo.full_name}: stored {pr_total} pull requests and {review_total} reviews"
        )
