import threading

import pytest
import requests
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from context_keeper.core.exceptions import (
    ExternalServiceError,
    IngestionCancelled,
    InvalidStateError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from context_keeper.data.enums.entity_kind import EntityKind
from context_keeper.data.enums.job_status import JobStatus
from context_keeper.services.external.github_client import GitHubClient
from context_keeper.services.internal.ingestion_orchestrator import (
    IngestionOrchestrator,
    KindOutcome,
    classify_outcome,
)
from context_keeper.util.mapper import (
    commit_json_to_domain,
    issue_json_to_domain,
    pull_request_json_to_domain,
)
from tests.helpers.github_fixtures import (
    FakeHttpSession,
    github_commit,
    github_issue,
    github_pull,
    make_response,
    paged_listing,
    serve_pull_files,
)

RATE_LIMIT_MESSAGE = "GitHub API rate limit exceeded, resets at 2026-01-01T00:00:00+00:00"


def pulls(count):
    return [pull_request_json_to_domain(github_pull(n), files=[f"f{n}.py"]) for n in range(count, 0, -1)]


def issues(count):
    return [issue_json_to_domain(github_issue(n)) for n in range(count, 0, -1)]


def commits(count):
    return [commit_json_to_domain(github_commit(i)) for i in range(count)]


class FakeClient:
    """Serves prepared entities (or raises prepared errors) per kind."""

    def __init__(self, pull_requests=(), issues=(), commits=(), degraded_pull_requests=(), degraded_commits=()):
        self.results = {
            EntityKind.PULL_REQUEST: pull_requests,
            EntityKind.ISSUE: issues,
            EntityKind.COMMIT: commits,
        }
        self.degraded_pull_requests = list(degraded_pull_requests)
        self.degraded_commits = list(degraded_commits)
        self.calls = []
        self.closed = False

    def _serve(self, kind, token, limit):
        self.calls.append((kind, token, limit))
        result = self.results[kind]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result()
        return list(result)[:limit]

    def fetch_pull_requests(self, token, owner, repo, limit):
        return self._serve(EntityKind.PULL_REQUEST, token, limit)

    def fetch_issues(self, token, owner, repo, limit):
        return self._serve(EntityKind.ISSUE, token, limit)

    def fetch_commits(self, token, owner, repo, limit):
        return self._serve(EntityKind.COMMIT, token, limit)

    def close(self):
        self.closed = True


@pytest.fixture
def orchestrator_for(settings, session_factory):
    def build(client):
        return IngestionOrchestrator(settings, session_factory, client_factory=lambda cancel_event: client)

    return build


@pytest.fixture
def repository(settings, session_factory):
    return IngestionOrchestrator(settings, session_factory).register_repository("acme", "widget")


def test_rate_limited_issues_make_job_partial(orchestrator_for, repository):
    client = FakeClient(
        pull_requests=pulls(10),
        issues=RateLimitError(RATE_LIMIT_MESSAGE),
        commits=commits(5),
    )
    orchestrator = orchestrator_for(client)
    job = orchestrator.create_job(repository.id, user_id=42)

    outcome = orchestrator.run_job(job, "gh-token")

    assert outcome.status is JobStatus.partial
    assert outcome.error_message == RATE_LIMIT_MESSAGE
    assert outcome.kinds[EntityKind.ISSUE].rate_limited

    stored = orchestrator.get_job_status(job.id)
    assert stored.status is JobStatus.partial
    assert stored.error_message == RATE_LIMIT_MESSAGE
    assert stored.started_at is not None
    assert stored.finished_at is not None
    assert stored.requested_by == "42"

    assert len(orchestrator.get_recent(repository.id, "pull_request", 100)) == 10
    assert orchestrator.get_recent(repository.id, "issue", 100) == []
    assert len(orchestrator.get_recent(repository.id, "commit", 100)) == 5
    assert client.closed


def test_all_kinds_failing_reports_first_error(orchestrator_for, repository):
    client = FakeClient(
        pull_requests=ExternalServiceError("pull requests unavailable", status=500),
        issues=RateLimitError(RATE_LIMIT_MESSAGE),
        commits=ExternalServiceError("commits unavailable", status=502),
    )
    orchestrator = orchestrator_for(client)
    job = orchestrator.create_job(repository.id, user_id=None)

    outcome = orchestrator.run_job(job, "gh-token")

    assert outcome.status is JobStatus.failed
    assert outcome.error_message == "pull requests unavailable"
    assert [kind for kind, _, _ in client.calls] == [
        EntityKind.PULL_REQUEST, EntityKind.ISSUE, EntityKind.COMMIT,
    ]


def test_successful_job_completes(orchestrator_for, repository):
    client = FakeClient(pull_requests=pulls(3), issues=issues(2), commits=commits(4))
    orchestrator = orchestrator_for(client)
    job = orchestrator.create_job(repository.id, user_id="7")

    outcome = orchestrator.run_job(job, "gh-token")

    assert outcome.status is JobStatus.completed
    assert outcome.error_message is None
    assert outcome.kinds[EntityKind.COMMIT].persisted == 4
    assert orchestrator.get_job_status(job.id).error_message is None


def test_limits_come_from_settings(orchestrator_for, repository):
    client = FakeClient()
    orchestrator = orchestrator_for(client)

    orchestrator.run_job(orchestrator.create_job(repository.id, None), "gh-token")

    assert [(kind, limit) for kind, _, limit in client.calls] == [
        (EntityKind.PULL_REQUEST, 50),
        (EntityKind.ISSUE, 50),
        (EntityKind.COMMIT, 100),
    ]


def test_degraded_file_lists_make_job_partial(orchestrator_for, repository):
    client = FakeClient(pull_requests=pulls(3), degraded_pull_requests=[2])
    orchestrator = orchestrator_for(client)
    job = orchestrator.create_job(repository.id, None)

    outcome = orchestrator.run_job(job, "gh-token")

    assert outcome.status is JobStatus.partial
    assert outcome.error_message == "file list unavailable for 1 pull request(s)"
    assert len(orchestrator.get_recent(repository.id, EntityKind.PULL_REQUEST, 10)) == 3


def test_blank_credential_fails_job_after_running(settings, session_factory, repository):
    def factory(cancel_event):
        raise AssertionError("client must not be built")

    orchestrator = IngestionOrchestrator(settings, session_factory, client_factory=factory)
    job = orchestrator.create_job(repository.id, None)

    outcome = orchestrator.run_job(job, "   ")

    assert outcome.status is JobStatus.failed
    stored = orchestrator.get_job_status(job.id)
    assert stored.error_message == "GitHub credential is missing"
    assert stored.started_at is not None


def test_client_construction_failure_fails_job(settings, session_factory, repository):
    def factory(cancel_event):
        raise RuntimeError("no session")

    orchestrator = IngestionOrchestrator(settings, session_factory, client_factory=factory)
    job = orchestrator.create_job(repository.id, None)

    outcome = orchestrator.run_job(job, "gh-token")

    assert outcome.status is JobStatus.failed
    assert "no session" in outcome.error_message


def test_unexpected_error_fails_only_that_kind(orchestrator_for, repository):
    client = FakeClient(pull_requests=pulls(1), issues=issues(1), commits=RuntimeError("kaboom"))
    orchestrator = orchestrator_for(client)

    outcome = orchestrator.run_job(orchestrator.create_job(repository.id, None), "gh-token")

    assert outcome.status is JobStatus.partial
    assert outcome.error_message == "Unexpected error: kaboom"


def test_malformed_record_fails_its_kind(orchestrator_for, repository):
    client = FakeClient(
        pull_requests=pulls(2),
        issues=ValidationError("Malformed issue payload (3)"),
        commits=commits(1),
    )
    orchestrator = orchestrator_for(client)

    outcome = orchestrator.run_job(orchestrator.create_job(repository.id, None), "gh-token")

    assert outcome.status is JobStatus.partial
    assert outcome.error_message == "Malformed issue payload (3)"


def test_rerun_upserts_without_duplicates(orchestrator_for, repository):
    first = pulls(2)
    orchestrator = orchestrator_for(FakeClient(pull_requests=first))
    orchestrator.run_job(orchestrator.create_job(repository.id, None), "gh-token")

    merged = [pr.model_copy(update={"state": "merged"}) for pr in first]
    orchestrator = orchestrator_for(FakeClient(pull_requests=merged))
    orchestrator.run_job(orchestrator.create_job(repository.id, None), "gh-token")

    stored = orchestrator.get_recent(repository.id, "pull_request", 10)
    assert len(stored) == 2
    assert {pr.state for pr in stored} == {"merged"}
    assert len(orchestrator.list_jobs(repository.id)) == 2


def test_errors_before_running_are_raised(orchestrator_for, repository):
    orchestrator = orchestrator_for(FakeClient())
    job = orchestrator.create_job(repository.id, None)
    orchestrator.run_job(job, "gh-token")

    with pytest.raises(InvalidStateError):
        orchestrator.run_job(job, "gh-token")
    with pytest.raises(NotFoundError):
        orchestrator.create_job(9999, None)
    with pytest.raises(NotFoundError):
        orchestrator.get_job_status(9999)


def test_latest_job(orchestrator_for, repository):
    orchestrator = orchestrator_for(FakeClient())

    with pytest.raises(NotFoundError):
        orchestrator.get_latest_job(repository.id)

    orchestrator.create_job(repository.id, None)
    second = orchestrator.create_job(repository.id, None)

    assert orchestrator.get_latest_job(repository.id).id == second.id


def test_register_and_list_repositories(settings, session_factory):
    orchestrator = IngestionOrchestrator(settings, session_factory)

    first = orchestrator.register_repository("acme", "widget")
    again = orchestrator.register_repository(" acme ", "widget")
    orchestrator.register_repository("acme", "gadget")

    assert first.id == again.id
    assert first.full_name == "acme/widget"
    assert {r.name for r in orchestrator.list_repositories("acme")} == {"widget", "gadget"}


@pytest.mark.parametrize("owner, name", [("", "widget"), ("acme", ""), ("acme/x", "widget"), (None, "widget")])
def test_register_repository_rejects_bad_reference(settings, session_factory, owner, name):
    with pytest.raises(ValidationError):
        IngestionOrchestrator(settings, session_factory).register_repository(owner, name)


def test_get_recent_validates_arguments(orchestrator_for, repository):
    orchestrator = orchestrator_for(FakeClient())

    with pytest.raises(ValidationError):
        orchestrator.get_recent(repository.id, "wiki", 10)
    with pytest.raises(ValidationError):
        orchestrator.get_recent(repository.id, "commit", 0)


def test_get_recent_returns_newest_first(orchestrator_for, repository):
    orchestrator = orchestrator_for(FakeClient(pull_requests=pulls(5)))
    orchestrator.run_job(orchestrator.create_job(repository.id, None), "gh-token")

    recent = orchestrator.get_recent(repository.id, "pull_request", 2)

    assert [pr.number for pr in recent] == [5, 4]


def test_start_job_runs_in_background(orchestrator_for, repository):
    orchestrator = orchestrator_for(FakeClient(pull_requests=pulls(2)))
    job = orchestrator.create_job(repository.id, None)

    thread = orchestrator.start_job(job, "gh-token")
    thread.join(timeout=10)

    assert not thread.is_alive()
    assert thread.daemon
    assert orchestrator.get_job_status(job.id).status is JobStatus.completed


def test_start_job_logs_errors_before_running(orchestrator_for, repository, caplog):
    orchestrator = orchestrator_for(FakeClient())
    job = orchestrator.create_job(repository.id, None)
    orchestrator.run_job(job, "gh-token")

    thread = orchestrator.start_job(job, "gh-token")
    thread.join(timeout=10)

    assert "could not start" in caplog.text


def test_cancelled_before_start_fails_every_kind(orchestrator_for, repository):
    client = FakeClient(pull_requests=pulls(2))
    orchestrator = orchestrator_for(client)
    cancel = threading.Event()
    cancel.set()

    outcome = orchestrator.run_job(orchestrator.create_job(repository.id, None), "gh-token", cancel_event=cancel)

    assert outcome.status is JobStatus.failed
    assert outcome.error_message == "ingestion cancelled"
    assert client.calls == []


def test_cancelled_mid_job_skips_remaining_kinds(orchestrator_for, repository):
    cancel = threading.Event()

    def cancel_issues():
        cancel.set()
        raise IngestionCancelled("ingestion cancelled")

    client = FakeClient(pull_requests=pulls(2), issues=cancel_issues, commits=commits(3))
    orchestrator = orchestrator_for(client)
    job = orchestrator.create_job(repository.id, None)

    outcome = orchestrator.run_job(job, "gh-token", cancel_event=cancel)

    assert outcome.status is JobStatus.partial
    assert outcome.error_message == "ingestion cancelled"
    assert outcome.kinds[EntityKind.COMMIT].cancelled
    assert [kind for kind, _, _ in client.calls] == [EntityKind.PULL_REQUEST, EntityKind.ISSUE]
    assert orchestrator.get_job_status(job.id).finished_at is not None


def test_network_failure_on_first_page_is_retried(settings, session_factory, repository):
    base = "/repos/acme/widget"
    session = FakeHttpSession(
        {
            f"{base}/pulls": [
                requests.ConnectionError("connection reset"),
                make_response(200, [github_pull(2), github_pull(1)]),
            ],
            f"{base}/issues": paged_listing([github_issue(3), github_issue(2, pull_request=True)], f"{base}/issues"),
            f"{base}/commits": paged_listing([github_commit(0)], f"{base}/commits"),
        },
        fallback=serve_pull_files,
    )

    def factory(cancel_event):
        return GitHubClient.from_settings(settings, cancel_event=cancel_event, session=session)

    orchestrator = IngestionOrchestrator(settings, session_factory, client_factory=factory)
    job = orchestrator.create_job(repository.id, None)

    outcome = orchestrator.run_job(job, "gh-token")

    assert outcome.status is JobStatus.completed
    assert session.paths().count(f"{base}/pulls") == 2
    assert outcome.kinds[EntityKind.PULL_REQUEST].persisted == 2
    assert outcome.kinds[EntityKind.ISSUE].persisted == 1
    assert session.closed

    stored = orchestrator.get_recent(repository.id, "pull_request", 10)
    assert stored[0].files_changed == ["src/module_2.py", "tests/test_2.py"]


def test_classify_outcome():
    ok = KindOutcome(kind=EntityKind.PULL_REQUEST)
    bad = KindOutcome(kind=EntityKind.ISSUE, error="issues down")
    worse = KindOutcome(kind=EntityKind.COMMIT, error="commits down")

    assert classify_outcome([ok, ok, ok]) == (JobStatus.completed, None)
    assert classify_outcome([ok, bad, worse]) == (JobStatus.partial, "issues down")
    assert classify_outcome([bad, worse]) == (JobStatus.failed, "issues down")
    assert classify_outcome([ok], ["file list unavailable for 1 commit(s)"]) == (
        JobStatus.partial,
        "file list unavailable for 1 commit(s)",
    )


def lost_connection(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("server closed the connection"))


def test_database_failure_while_finishing_is_not_raised(orchestrator_for, repository, monkeypatch, caplog):
    def commits_then_database_down():
        monkeypatch.setattr(Session, "get", lost_connection)
        return []

    orchestrator = orchestrator_for(FakeClient(pull_requests=pulls(1), commits=commits_then_database_down))
    job = orchestrator.create_job(repository.id, None)

    outcome = orchestrator.run_job(job, "gh-token")

    assert outcome.status is JobStatus.completed
    assert f"Failed to record final status of job {job.id}" in caplog.text

    monkeypatch.undo()
    assert orchestrator.get_job_status(job.id).status is JobStatus.running


def test_background_job_logs_unexpected_errors(orchestrator_for, repository, monkeypatch, caplog):
    orchestrator = orchestrator_for(FakeClient())
    job = orchestrator.create_job(repository.id, None)

    def broken_run(*args, **kwargs):
        raise RuntimeError("worker crashed")

    monkeypatch.setattr(orchestrator, "run_job", broken_run)

    thread = orchestrator.start_job(job, "gh-token")
    thread.join(timeout=10)

    assert not thread.is_alive()
    assert f"Ingestion job {job.id} aborted" in caplog.text
    assert "worker crashed" in caplog.text
