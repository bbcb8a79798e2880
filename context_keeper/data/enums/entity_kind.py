from enum import Enum


class EntityKind(Enum):
    PULL_REQUEST = "pull_request"
    ISSUE = "issue"
    COMMIT = "commit"
