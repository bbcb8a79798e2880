from dataclasses import dataclass
from datetime import datetime, timezone
import threading
import time
from typing import Any, Callable, Mapping

import requests

from context_keeper.core.config import Settings
from context_keeper.core.exceptions import (
    ExternalServiceError,
    IngestionCancelled,
    RateLimitError,
)
from context_keeper.data.domain.commit import Commit
from context_keeper.data.domain.issue import Issue
from context_keeper.data.domain.pull_request import PullRequest
from context_keeper.data.domain.repository import Repository
from context_keeper.util.logger import logger
from context_keeper.util.mapper import (
    commit_json_to_domain,
    file_names,
    is_pull_request,
    issue_json_to_domain,
    pull_request_json_to_domain,
    repository_json_to_domain,
)

MAX_PER_PAGE = 100
DEFAULT_MAX_PAGES = 10


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_rate_limit(headers: Mapping[str, str]) -> RateLimitInfo | None:
    limit = _parse_int(headers.get("X-RateLimit-Limit"))
    remaining = _parse_int(headers.get("X-RateLimit-Remaining"))
    reset = _parse_int(headers.get("X-RateLimit-Reset"))
    reset_at = datetime.fromtimestamp(reset, tz=timezone.utc) if reset is not None else None

    if limit is None and remaining is None and reset_at is None:
        return None
    return RateLimitInfo(limit=limit, remaining=remaining, reset_at=reset_at)


class GitHubClient:
    """
    Reads pull requests, issues and commits from the GitHub REST API.

    Every request is retried at most once: after a short pause on a network
    failure and after a longer one on a 5xx response. An exhausted rate limit
    fails immediately with RateLimitError. One client (and one HTTP session)
    is meant to serve a single ingestion job.

    Setting `cancel_event` stops the client before its next request or during a
    retry pause. A request already on the wire is not interrupted: it runs
    until it completes or hits `timeout_sec`, and its response is then discarded.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.github.com",
        user_agent: str = "ContextKeeper/1.0",
        api_version: str = "2022-11-28",
        timeout_sec: float = 30.0,
        network_retry_backoff: float = 1.0,
        server_error_retry_backoff: float = 2.0,
        fetch_commit_files: bool = False,
        max_pages: int = DEFAULT_MAX_PAGES,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._api_version = api_version
        self._timeout_sec = timeout_sec
        self._network_retry_backoff = network_retry_backoff
        self._server_error_retry_backoff = server_error_retry_backoff
        self._fetch_commit_files = fetch_commit_files
        self._max_pages = max_pages
        self._session = session or requests.Session()
        self._sleep = sleep
        self._cancel_event = cancel_event

        self.last_rate_limit: RateLimitInfo | None = None
        self.degraded_pull_requests: list[int] = []
        self.degraded_commits: list[str] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cancel_event: threading.Event | None = None,
        **kwargs: Any,
    ) -> "GitHubClient":
        return cls(
            base_url=settings.github_api_url,
            user_agent=settings.github_user_agent,
            api_version=settings.github_api_version,
            timeout_sec=settings.github_timeout_seconds,
            network_retry_backoff=settings.network_retry_backoff_seconds,
            server_error_retry_backoff=settings.server_error_retry_backoff_seconds,
            fetch_commit_files=settings.fetch_commit_files,
            cancel_event=cancel_event,
            **kwargs,
        )

    def close(self) -> None:
        self._session.close()

    # region public API

    def fetch_pull_requests(self, token: str, owner: str, repo: str, limit: int) -> list[PullRequest]:
        raw_prs = self._paginate(
            token,
            f"/repos/{owner}/{repo}/pulls",
            {"state": "all", "sort": "updated", "direction": "desc"},
            limit,
        )

        prs = []
        for raw in raw_prs:
            pr = pull_request_json_to_domain(raw)
            files = self._fetch_pull_request_files(token, owner, repo, pr.number)
            prs.append(pr.model_copy(update={"files_changed": files}))

        logger.info("Fetched %d pull requests for %s/%s", len(prs), owner, repo)
        return prs

    def fetch_issues(self, token: str, owner: str, repo: str, limit: int) -> list[Issue]:
        raw_issues = self._paginate(
            token,
            f"/repos/{owner}/{repo}/issues",
            {"state": "all", "sort": "updated", "direction": "desc"},
            limit,
            keep=lambda item: not is_pull_request(item),
        )
        issues = [issue_json_to_domain(issue) for issue in raw_issues]

        logger.info("Fetched %d issues for %s/%s", len(issues), owner, repo)
        return issues

    def fetch_commits(self, token: str, owner: str, repo: str, limit: int) -> list[Commit]:
        raw_commits = self._paginate(token, f"/repos/{owner}/{repo}/commits", {}, limit)

        commits = []
        for raw in raw_commits:
            commit = commit_json_to_domain(raw)
            if self._fetch_commit_files:
                files = self._fetch_commit_files_list(token, owner, repo, commit.sha)
                commit = commit.model_copy(update={"files_changed": files})
            commits.append(commit)

        logger.info("Fetched %d commits for %s/%s", len(commits), owner, repo)
        return commits

    def fetch_user_repositories(self, token: str) -> list[Repository]:
        payload = self._get_json(
            token,
            "/user/repos",
            {"type": "public", "sort": "updated", "per_page": MAX_PER_PAGE},
        )
        if not isinstance(payload, list):
            raise ExternalServiceError("Expected a list of repositories from GitHub")
        return [repository_json_to_domain(repo) for repo in payload]

    # endregion

    # region secondary requests

    def _fetch_pull_request_files(self, token: str, owner: str, repo: str, number: int) -> list[str]:
        try:
            files = self._get_json(token, f"/repos/{owner}/{repo}/pulls/{number}/files")
        except (ExternalServiceError, RateLimitError) as e:
            logger.warning("File list unavailable for %s/%s#%s: %s", owner, repo, number, e)
            self.degraded_pull_requests.append(number)
            return []
        return file_names(files if isinstance(files, list) else [])

    def _fetch_commit_files_list(self, token: str, owner: str, repo: str, sha: str) -> list[str]:
        try:
            commit = self._get_json(token, f"/repos/{owner}/{repo}/commits/{sha}")
        except (ExternalServiceError, RateLimitError) as e:
            logger.warning("File list unavailable for %s/%s@%s: %s", owner, repo, (sha or "?")[:7], e)
            self.degraded_commits.append(sha)
            return []
        return file_names((commit or {}).get("files"))

    # endregion

    # region transport

    def _paginate(
        self,
        token: str,
        path: str,
        params: dict[str, Any],
        limit: int,
        keep: Callable[[dict], bool] | None = None,
    ) -> list[dict]:
        if limit <= 0:
            return []

        per_page = min(limit, MAX_PER_PAGE)
        items: list[dict] = []

        for page in range(1, self._max_pages + 1):
            response = self._request(token, path, {**params, "per_page": per_page, "page": page})
            batch = self._decode(response)
            if not isinstance(batch, list):
                raise ExternalServiceError(
                    f"Expected a list from GitHub (path={path})",
                    status=response.status_code,
                    url=response.url,
                )

            for item in batch:
                if keep is None or keep(item):
                    items.append(item)
                if len(items) >= limit:
                    return items

            if len(batch) < per_page or "next" not in response.links:
                break

        return items

    def _get_json(self, token: str, path: str, params: dict[str, Any] | None = None) -> Any:
        return self._decode(self._request(token, path, params))

    def _decode(self, response: requests.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(
                f"Failed to decode GitHub response: {e}",
                status=response.status_code,
                url=response.url,
            ) from e

    def _request(self, token: str, path: str, params: dict[str, Any] | None = None) -> requests.Response:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self._user_agent,
            "X-GitHub-Api-Version": self._api_version,
        }

        for attempt in range(2):
            self._check_cancelled()
            try:
                response = self._session.get(
                    url,
                    headers=headers,
                    params=params,
                    timeout=self._timeout_sec,
                )
            except requests.RequestException as e:
                if attempt == 0:
                    logger.warning("GitHub request to %s failed, retrying: %s", path, e)
                    self._backoff(self._network_retry_backoff)
                    continue
                raise ExternalServiceError(
                    f"GitHub request failed after retry: {e}", url=url
                ) from e

            self._check_cancelled()

            rate_limit = _parse_rate_limit(response.headers)
            if rate_limit is not None:
                self.last_rate_limit = rate_limit

            if 400 <= response.status_code < 500:
                if response.headers.get("X-RateLimit-Remaining") == "0":
                    reset_at = rate_limit.reset_at if rate_limit else None
                    resets = reset_at.isoformat() if reset_at else "unknown"
                    raise RateLimitError(
                        f"GitHub API rate limit exceeded, resets at {resets}",
                        reset_at=reset_at,
                        url=url,
                    )
                raise ExternalServiceError(
                    f"GitHub API request failed with status {response.status_code}",
                    status=response.status_code,
                    url=url,
                )

            if response.status_code >= 500:
                if attempt == 0:
                    logger.warning(
                        "GitHub returned %d for %s, retrying", response.status_code, path
                    )
                    self._backoff(self._server_error_retry_backoff)
                    continue
                raise ExternalServiceError(
                    f"GitHub API request failed with status {response.status_code}",
                    status=response.status_code,
                    url=url,
                )

            return response

        raise ExternalServiceError(f"GitHub request to {path} failed", url=url)

    def _backoff(self, seconds: float) -> None:
        if self._cancel_event is not None:
            if self._cancel_event.wait(seconds):
                raise IngestionCancelled("ingestion cancelled")
            return
        self._sleep(seconds)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise IngestionCancelled("ingestion cancelled")

    # endregion
