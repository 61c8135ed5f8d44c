"""User resolution and reference linking.

People are mentioned as commit authors/committers, merge request authors and
reviewers, with whatever subset of (username, email, display name) the
platform provides. Mentions are deduplicated by username first, then by email
(``user_match_by_email``), then by display name when nothing else is known.
Each distinct person is found or created once, and every record's raw
strings are then rewritten into user id references.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from scmsync.config import Settings, settings as default_settings
from scmsync.errors.exceptions import DataProcessingError
from scmsync.models.records import CommitRecord, MergeRequestRecord
from scmsync.services.persistence import PersistenceService

logger = logging.getLogger(__name__)


def _norm(value: str | None) -> str | None:
    value = (value or "").strip()
    return value.lower() or None


@dataclass
class UserMention:
    username: str | None = None
    email: str | None = None
    display_name: str | None = None


@dataclass
class Person:
    """A deduplicated identity and every alias it was mentioned under."""

    username: str
    email: str | None = None
    display_name: str | None = None
    usernames: set[str] = field(default_factory=set)
    emails: set[str] = field(default_factory=set)
    names: set[str] = field(default_factory=set)


@dataclass
class UserDirectory:
    """Alias -> user id lookup built after find-or-create."""

    by_username: dict[str, str] = field(default_factory=dict)
    by_email: dict[str, str] = field(default_factory=dict)
    by_name: dict[str, str] = field(default_factory=dict)

    def lookup(self, username: str | None = None, email: str | None = None, name: str | None = None) -> str | None:
        for table, key in ((self.by_username, username), (self.by_email, email), (self.by_name, name)):
            normalized = _norm(key)
            if normalized and normalized in table:
                return table[normalized]
        return None

    @property
    def user_ids(self) -> set[str]:
        return set(self.by_username.values()) | set(self.by_email.values()) | set(self.by_name.values())


def iter_mentions(
    commits: Iterable[CommitRecord],
    merge_requests: Iterable[MergeRequestRecord],
) -> Iterator[UserMention]:
    for commit in commits:
        yield UserMention(commit.author_username, commit.author_email, commit.author_name)
        yield UserMention(commit.committer_username, commit.committer_email, commit.committer_name)
    for mr in merge_requests:
        yield UserMention(mr.author_username, mr.author_email, mr.author_name)
        for reviewer in mr.reviewers:
            yield UserMention(reviewer, reviewer if "@" in reviewer else None, None)


def dedupe_mentions(mentions: Iterable[UserMention], match_by_email: bool = True) -> list[Person]:
    """Collapse mentions into distinct people, preserving first-seen order."""
    people: list[Person] = []
    by_username: dict[str, Person] = {}
    by_email: dict[str, Person] = {}
    by_name: dict[str, Person] = {}

    for mention in mentions:
        username, email, name = _norm(mention.username), _norm(mention.email), _norm(mention.display_name)
        if not (username or email or name):
            continue

        person = by_username.get(username) if username else None
        if person is None and email and match_by_email:
            person = by_email.get(email)
        if person is None and not username and not email and name:
            person = by_name.get(name)

        if person is None:
            raw_name = next(
                value.strip()
                for value in (mention.username, mention.email, mention.display_name)
                if value and value.strip()
            )
            person = Person(
                username=raw_name,
                email=mention.email,
                display_name=mention.display_name,
            )
            people.append(person)

        if username:
            person.usernames.add(username)
            by_username.setdefault(username, person)
        if email:
            person.emails.add(email)
            by_email.setdefault(email, person)
            if person.email is None:
                person.email = mention.email
        if name:
            person.names.add(name)
            by_name.setdefault(name, person)
            if person.display_name is None:
                person.display_name = mention.display_name

    return people


class UserResolver:
    """Finds or creates users for a scan and links record references."""

    def __init__(self, persistence: PersistenceService, settings: Settings | None = None):
        self.persistence = persistence
        self.settings = settings or default_settings

    async def resolve(
        self,
        scope_id: str,
        commits: list[CommitRecord],
        merge_requests: list[MergeRequestRecord],
        repository_name: str | None = None,
    ) -> UserDirectory:
        match_by_email = self.settings.user_match_by_email
        people = dedupe_mentions(iter_mentions(commits, merge_requests), match_by_email)
        directory = UserDirectory()

        for person in people:
            try:
                row = await self.persistence.find_or_create_user(
                    scope_id,
                    person.username,
                    email=person.email,
                    display_name=person.display_name,
                    repository_name=repository_name,
                    match_by_email=match_by_email,
                )
            except DataProcessingError as exc:
                logger.warning("Skipping user %s in scope %s: %s", person.username, scope_id, exc.message)
                continue

            for alias in person.usernames | {_norm(row.username)}:
                directory.by_username.setdefault(alias, row.user_id)
            for alias in person.emails:
                directory.by_email.setdefault(alias, row.user_id)
            for alias in person.names:
                directory.by_name.setdefault(alias, row.user_id)

        self.link(commits, merge_requests, directory)
        logger.info("Resolved %d users from %d distinct people", len(directory.user_ids), len(people))
        return directory

    @staticmethod
    def link(
        commits: Iterable[CommitRecord],
        merge_requests: Iterable[MergeRequestRecord],
        directory: UserDirectory,
    ) -> None:
        """Replace raw identity strings with user id references where resolvable."""
        for commit in commits:
            commit.author_user_id = directory.lookup(commit.author_username, commit.author_email, commit.author_name)
            commit.committer_user_id = directory.lookup(
                commit.committer_username, commit.committer_email, commit.committer_name,
            )
        for mr in merge_requests:
            mr.author_user_id = directory.lookup(mr.author_username, mr.author_email, mr.author_name)
            reviewer_ids: list[str] = []
            for reviewer in mr.reviewers:
                user_id = directory.lookup(reviewer, reviewer if "@" in reviewer else None)
                if user_id and user_id not in reviewer_ids:
                    reviewer_ids.append(user_id)
            mr.reviewer_user_ids = reviewer_ids
