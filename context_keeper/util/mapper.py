from typing import Any, Iterable

import pydantic

from context_keeper.core.exceptions import ValidationError
from context_keeper.data.domain.commit import Commit
from context_keeper.data.domain.issue import Issue
from context_keeper.data.domain.pull_request import PullRequest
from context_keeper.data.domain.repository import Repository


"""
Helpers
"""

def is_pull_request(json: dict) -> bool:
    # The issues listing embeds pull requests; only they carry this linkage.
    return "pull_request" in json


def label_names(labels: Iterable[dict] | None) -> list[str]:
    return [label["name"] for label in labels or [] if label.get("name")]


def file_names(files: Iterable[dict] | None) -> list[str]:
    return [file["filename"] for file in files or [] if file.get("filename")]


def _login(user: dict | None) -> str:
    return (user or {}).get("login") or ""


def _build(model: type[pydantic.BaseModel], kind: str, fields: dict[str, Any]):
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        ref = fields.get("number") or fields.get("id") or fields.get("sha") or "?"
        raise ValidationError(f"Malformed {kind} payload ({ref}): {e}") from e


"""
JSON Mappers (GitHub JSON -> Domain)
"""

def pull_request_json_to_domain(json: dict, files: list[str] | None = None) -> PullRequest:
    merged_at = json.get("merged_at")
    return _build(
        PullRequest,
        "pull request",
        {
            "id": json.get("id"),
            "number": json.get("number"),
            "title": json.get("title") or "",
            "body": json.get("body") or "",
            "author": _login(json.get("user")),
            "state": "merged" if merged_at else json.get("state"),
            "created_at": json.get("created_at"),
            "merged_at": merged_at,
            "files_changed": list(files or []),
            "labels": label_names(json.get("labels")),
        },
    )


def issue_json_to_domain(json: dict) -> Issue:
    if is_pull_request(json):
        raise ValidationError(f"Issue listing item {json.get('number')} is a pull request")

    return _build(
        Issue,
        "issue",
        {
            "id": json.get("id"),
            "title": json.get("title") or "",
            "body": json.get("body") or "",
            "author": _login(json.get("user")),
            "state": json.get("state"),
            "created_at": json.get("created_at"),
            "closed_at": json.get("closed_at"),
            "labels": label_names(json.get("labels")),
        },
    )


def commit_json_to_domain(json: dict, files: list[str] | None = None) -> Commit:
    signature = json.get("commit") or {}
    author = signature.get("author") or {}
    if files is None:
        files = file_names(json.get("files"))

    return _build(
        Commit,
        "commit",
        {
            "sha": json.get("sha"),
            "message": signature.get("message") or "",
            "author": author.get("name") or "",
            "created_at": author.get("date"),
            "files_changed": files,
        },
    )


def repository_json_to_domain(json: dict) -> Repository:
    return _build(
        Repository,
        "repository",
        {
            "name": json.get("name"),
            "full_name": json.get("full_name"),
            "owner": _login(json.get("owner")),
            "created_at": json.get("created_at"),
            "updated_at": json.get("updated_at"),
        },
    )
