from contextlib import closing
from dataclasses import dataclass, field
import threading
from typing import Any, Callable, Protocol

from sqlalchemy.orm import sessionmaker

from context_keeper.adapters.db.repositories.commit_repo import CommitRepository
from context_keeper.adapters.db.repositories.ingestion_job_repo import IngestionJobRepository
from context_keeper.adapters.db.repositories.issue_repo import IssueRepository
from context_keeper.adapters.db.repositories.pull_request_repo import PullRequestRepository
from context_keeper.adapters.db.repositories.repository_repo import RepositoryRepository
from context_keeper.core.config import Settings
from context_keeper.core.exceptions import (
    IngestionCancelled,
    IngestionError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from context_keeper.data.domain.commit import Commit
from context_keeper.data.domain.ingestion_job import IngestionJob
from context_keeper.data.domain.issue import Issue
from context_keeper.data.domain.pull_request import PullRequest
from context_keeper.data.domain.repository import Repository
from context_keeper.data.enums.entity_kind import EntityKind
from context_keeper.data.enums.job_status import JobStatus
from context_keeper.services.external.github_client import GitHubClient
from context_keeper.util.logger import logger

# Order matters: it is both the extraction order and the error-reporting order.
EXTRACTION_ORDER = (EntityKind.PULL_REQUEST, EntityKind.ISSUE, EntityKind.COMMIT)

_REPOSITORIES = {
    EntityKind.PULL_REQUEST: (PullRequestRepository, PullRequest),
    EntityKind.ISSUE: (IssueRepository, Issue),
    EntityKind.COMMIT: (CommitRepository, Commit),
}


class ExtractionClient(Protocol):
    degraded_pull_requests: list[int]
    degraded_commits: list[str]

    def fetch_pull_requests(self, token: str, owner: str, repo: str, limit: int) -> list[PullRequest]: ...

    def fetch_issues(self, token: str, owner: str, repo: str, limit: int) -> list[Issue]: ...

    def fetch_commits(self, token: str, owner: str, repo: str, limit: int) -> list[Commit]: ...

    def close(self) -> None: ...


ClientFactory = Callable[[threading.Event | None], ExtractionClient]


@dataclass
class KindOutcome:
    """Result of extracting and persisting one entity kind."""
    kind: EntityKind
    fetched: int = 0
    persisted: int = 0
    error: str | None = None
    rate_limited: bool = False
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class IngestionOutcome:
    job_id: int
    status: JobStatus
    error_message: str | None = None
    kinds: dict[EntityKind, KindOutcome] = field(default_factory=dict)
    degraded: list[str] = field(default_factory=list)


def classify_outcome(
    outcomes: list[KindOutcome],
    degraded: list[str] | None = None,
) -> tuple[JobStatus, str | None]:
    """
    Computes the terminal job status and the error text to persist.

    - no failed kind: completed, or partial if some items were degraded
    - every kind failed: failed
    - otherwise: partial (a rate-limited kind always lands here when another kind succeeded)

    The error text is the first failure in extraction order, or the degradation
    notice when nothing failed outright.
    """
    failures = [o for o in outcomes if not o.succeeded]

    if not failures:
        if degraded:
            return JobStatus.partial, "; ".join(degraded)
        return JobStatus.completed, None

    first_error = failures[0].error
    if len(failures) == len(outcomes):
        return JobStatus.failed, first_error
    return JobStatus.partial, first_error


def _default_client_factory(settings: Settings) -> ClientFactory:
    def factory(cancel_event: threading.Event | None) -> ExtractionClient:
        return GitHubClient.from_settings(settings, cancel_event=cancel_event)

    return factory


class IngestionOrchestrator:
    """
    Drives ingestion jobs for repositories.

    Process (run_job):
    1. pending -> running
    2. Pull requests, issues and commits are fetched and persisted one kind
       after another; a failing kind never stops the others
    3. The terminal status is computed from the per-kind results and written
       together with finished_at and the error text

    Errors before step 1 are raised to the caller. After that the job always
    ends in a terminal status and nothing is raised.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        client_factory: ClientFactory | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.client_factory = client_factory or _default_client_factory(settings)
        self._limits = {
            EntityKind.PULL_REQUEST: settings.pull_request_limit,
            EntityKind.ISSUE: settings.issue_limit,
            EntityKind.COMMIT: settings.commit_limit,
        }

    # region repositories

    def register_repository(self, owner: str, name: str) -> Repository:
        owner = (owner or "").strip()
        name = (name or "").strip()
        if not owner or not name or "/" in owner or "/" in name:
            raise ValidationError(f"Invalid repository reference: {owner!r}/{name!r}")

        with self.session_factory() as session:
            repo = RepositoryRepository(session).upsert(owner, name)
            logger.info("Registered repository %s (id=%d)", repo.full_name, repo.id)
            return Repository.model_validate(repo)

    def list_repositories(self, owner: str) -> list[Repository]:
        with self.session_factory() as session:
            repos = RepositoryRepository(session).get_by_owner(owner)
            return [Repository.model_validate(r) for r in repos]

    # endregion

    # region jobs

    def create_job(self, repository_id: int, user_id: str | None) -> IngestionJob:
        with self.session_factory() as session:
            if RepositoryRepository(session).get_by_id(repository_id) is None:
                raise NotFoundError(f"Repository {repository_id} not found")

            job = IngestionJobRepository(session).create_job(
                repository_id=repository_id,
                requested_by=str(user_id) if user_id is not None else None,
            )
            logger.info(
                "Created ingestion job %d for repository %d (user: %s)",
                job.id, repository_id, user_id,
            )
            return IngestionJob.model_validate(job)

    def get_job_status(self, job_id: int) -> IngestionJob:
        with self.session_factory() as session:
            job = IngestionJobRepository(session).get_required(job_id)
            return IngestionJob.model_validate(job)

    def list_jobs(self, repository_id: int) -> list[IngestionJob]:
        with self.session_factory() as session:
            jobs = IngestionJobRepository(session).get_by_repository(repository_id)
            return [IngestionJob.model_validate(j) for j in jobs]

    def get_latest_job(self, repository_id: int) -> IngestionJob:
        jobs = self.list_jobs(repository_id)
        if not jobs:
            raise NotFoundError(f"No ingestion jobs found for repository {repository_id}")
        return jobs[0]

    def start_job(
        self,
        job: IngestionJob,
        credential: str,
        cancel_event: threading.Event | None = None,
    ) -> threading.Thread:
        """Runs the job in a background thread and returns the started thread."""
        thread = threading.Thread(
            target=self._run_job_background,
            args=(job, credential, cancel_event),
            name=f"ingestion-job-{job.id}",
            daemon=True,
        )
        thread.start()
        logger.info("Started background ingestion for job %d", job.id)
        return thread

    def _run_job_background(
        self,
        job: IngestionJob,
        credential: str,
        cancel_event: threading.Event | None,
    ) -> None:
        try:
            self.run_job(job, credential, cancel_event=cancel_event)
        except IngestionError as e:
            logger.error("Ingestion job %d could not start: %s", job.id, e)
        except Exception:
            logger.exception("Ingestion job %d aborted", job.id)

    def run_job(
        self,
        job: IngestionJob,
        credential: str,
        cancel_event: threading.Event | None = None,
    ) -> IngestionOutcome:
        """
        Executes the job synchronously.

        Args:
            job: A pending job returned by create_job
            credential: GitHub token of the requesting user
            cancel_event: Set by the caller to stop the job before its next request

        Returns:
            IngestionOutcome with the terminal status and per-kind counts

        Raises:
            NotFoundError, InvalidStateError, PersistenceError: before the job reached running
        """
        with self.session_factory() as session:
            repo = RepositoryRepository(session).get_by_id(job.repository_id)
            if repo is None:
                raise NotFoundError(f"Repository {job.repository_id} not found")
            owner, name, full_name = repo.owner, repo.name, repo.full_name

            IngestionJobRepository(session).mark_running(job.id)

        logger.info("Ingestion job %d running for %s", job.id, full_name)

        if not credential or not credential.strip():
            return self._finish(
                job.id,
                IngestionOutcome(
                    job_id=job.id,
                    status=JobStatus.failed,
                    error_message="GitHub credential is missing",
                ),
            )

        outcomes: dict[EntityKind, KindOutcome] = {}
        degraded: list[str] = []

        try:
            client = self.client_factory(cancel_event)
        except Exception as e:
            logger.exception("Failed to build extraction client for job %d", job.id)
            return self._finish(
                job.id,
                IngestionOutcome(
                    job_id=job.id,
                    status=JobStatus.failed,
                    error_message=f"Failed to initialize GitHub client: {e}",
                ),
            )

        with closing(client):
            cancel_error: str | None = None
            for kind in EXTRACTION_ORDER:
                if cancel_error is None and cancel_event is not None and cancel_event.is_set():
                    cancel_error = "ingestion cancelled"
                if cancel_error is not None:
                    # Remaining kinds are not attempted once the caller has cancelled.
                    outcomes[kind] = KindOutcome(kind=kind, error=cancel_error, cancelled=True)
                    continue

                outcomes[kind] = self._extract_kind(
                    kind, client, credential, owner, name, job.repository_id
                )
                if outcomes[kind].cancelled:
                    cancel_error = outcomes[kind].error

            if client.degraded_pull_requests:
                degraded.append(
                    f"file list unavailable for {len(client.degraded_pull_requests)} pull request(s)"
                )
            if client.degraded_commits:
                degraded.append(
                    f"file list unavailable for {len(client.degraded_commits)} commit(s)"
                )

        ordered = [outcomes[kind] for kind in EXTRACTION_ORDER]
        status, error_message = classify_outcome(ordered, degraded)
        return self._finish(
            job.id,
            IngestionOutcome(
                job_id=job.id,
                status=status,
                error_message=error_message,
                kinds=outcomes,
                degraded=degraded,
            ),
        )

    def _extract_kind(
        self,
        kind: EntityKind,
        client: ExtractionClient,
        credential: str,
        owner: str,
        name: str,
        repository_id: int,
    ) -> KindOutcome:
        outcome = KindOutcome(kind=kind)
        fetch = {
            EntityKind.PULL_REQUEST: client.fetch_pull_requests,
            EntityKind.ISSUE: client.fetch_issues,
            EntityKind.COMMIT: client.fetch_commits,
        }[kind]
        repository_cls, _ = _REPOSITORIES[kind]

        try:
            entities = fetch(credential, owner, name, self._limits[kind])
            outcome.fetched = len(entities)

            with self.session_factory() as session:
                store = repository_cls(session)
                for entity in entities:
                    store.upsert(repository_id, entity)
                    outcome.persisted += 1
        except IngestionCancelled as e:
            outcome.error = str(e)
            outcome.cancelled = True
        except RateLimitError as e:
            outcome.error = str(e)
            outcome.rate_limited = True
        except IngestionError as e:
            outcome.error = str(e)
        except Exception as e:
            logger.exception("Unexpected error while ingesting %s for %s/%s", kind.value, owner, name)
            outcome.error = f"Unexpected error: {e}"

        if outcome.error:
            logger.error(
                "Failed to ingest %s for %s/%s: %s", kind.value, owner, name, outcome.error
            )
        else:
            logger.info(
                "Persisted %d %s record(s) for %s/%s", outcome.persisted, kind.value, owner, name
            )
        return outcome

    def _finish(self, job_id: int, outcome: IngestionOutcome) -> IngestionOutcome:
        try:
            with self.session_factory() as session:
                IngestionJobRepository(session).mark_finished(
                    job_id, outcome.status, outcome.error_message
                )
        except Exception:
            # The row stays in running; nothing more can be done here.
            logger.exception("Failed to record final status of job %d", job_id)
            return outcome

        logger.info(
            "Ingestion job %d finished: %s%s",
            job_id,
            outcome.status.value,
            f" ({outcome.error_message})" if outcome.error_message else "",
        )
        return outcome

    # endregion

    # region reads

    def get_recent(self, repository_id: int, kind: EntityKind | str, limit: int) -> list[Any]:
        """Bounded-recency read: at most `limit` entities of a kind, newest first."""
        try:
            kind = EntityKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown entity kind: {kind!r}") from None
        if limit <= 0:
            raise ValidationError("limit must be positive")

        repository_cls, entity_cls = _REPOSITORIES[kind]
        with self.session_factory() as session:
            rows = repository_cls(session).get_recent(repository_id, limit)
            return [entity_cls.model_validate(row) for row in rows]

    # endregion
