"""Prefixed identifiers for stored rows, scans and API traces."""

import uuid

SCAN_PREFIX = "scan_"
TRACE_PREFIX = "trc_"
COMMIT_PREFIX = "cmt_"
MERGE_REQUEST_PREFIX = "mr_"
REPOSITORY_PREFIX = "repo_"
USER_PREFIX = "usr_"


def generate_id(prefix: str) -> str:
    """Return ``prefix`` followed by 16 random hex characters, e.g. ``usr_a1b2c3d4e5f6a7b8``.

    Scan ids double as job ids, so a polled job and its log lines share one key.
    """
    return f"{prefix}{uuid.uuid4().hex[:16]}"
