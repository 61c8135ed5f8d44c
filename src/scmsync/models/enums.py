"""String enums for platforms, record states and scan lifecycle."""

from enum import StrEnum


class GitPlatform(StrEnum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    BITBUCKET_SERVER = "bitbucket_server"
    AZURE_REPOS = "azure_repos"


class MergeRequestState(StrEnum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


class FileChangeType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    RENAMED = "RENAMED"


class ScanState(StrEnum):
    RECEIVED = "RECEIVED"
    REPOSITORIES_FETCHED = "REPOSITORIES_FETCHED"
    COMMITS_FETCHED = "COMMITS_FETCHED"
    MERGE_REQUESTS_FETCHED = "MERGE_REQUESTS_FETCHED"
    USERS_RESOLVED = "USERS_RESOLVED"
    PERSISTED = "PERSISTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ScanStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
