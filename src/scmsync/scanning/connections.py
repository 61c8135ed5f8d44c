"""Connection registry: the tool connections a batch run scans.

Connections reference credentials by environment variable NAME, never by
value. A registry file is JSON::

    {"connections": [{"connection_id": "gh-api", "project_id": "payments",
                      "tool_type": "github",
                      "repository_url": "https://github.com/acme/api",
                      "branch": "main",
                      "auth": {"access_token_env": "GITHUB_TOKEN"}}]}
"""

import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from scmsync.errors.exceptions import ConfigurationError
from scmsync.models.scan import Credential, ScanRequest

logger = logging.getLogger(__name__)


class AuthConfig(BaseModel):
    """Authentication config: stores env var NAMES, never actual secrets."""

    model_config = ConfigDict(extra="forbid")

    username: str | None = None
    username_env: str | None = None
    access_token_env: str | None = None
    password_env: str | None = None
    personal_access_token_env: str | None = None

    def resolve_username(self) -> str | None:
        if self.username_env:
            return os.environ.get(self.username_env) or self.username
        return self.username

    def resolve_credential(self) -> Credential:
        """Secret precedence: access token, then password, then personal access token."""
        secret = None
        for env_name in (self.access_token_env, self.password_env, self.personal_access_token_env):
            if env_name and os.environ.get(env_name):
                secret = os.environ[env_name]
                break
        return Credential(token=secret, username=self.resolve_username())


class ToolConnection(BaseModel):
    """One configured repository on one platform."""

    model_config = ConfigDict(extra="forbid")

    connection_id: str
    project_id: str | None = None
    name: str | None = None
    tool_type: str
    repository_url: str | None = None
    repository_name: str | None = None
    branch: str | None = None
    auth: AuthConfig = Field(default_factory=AuthConfig)
    clone_enabled: bool = False
    fetch_repositories: bool = False
    enabled: bool = True

    @property
    def scope_id(self) -> str:
        return self.connection_id

    def to_scan_request(self) -> ScanRequest:
        """Build the scan request, resolving credentials from the environment.

        Raises:
            ConfigurationError: no credential could be resolved.
        """
        credential = self.auth.resolve_credential()
        if not credential.secret:
            raise ConfigurationError(
                f"No credentials available for connection {self.connection_id}",
                details={"connection_id": self.connection_id},
            )
        return ScanRequest(
            scope_id=self.scope_id,
            repository_url=self.repository_url,
            repository_name=self.repository_name,
            branch=self.branch,
            tool_type=self.tool_type,
            credential=credential,
            clone_enabled=self.clone_enabled,
            fetch_repositories=self.fetch_repositories,
            connection_id=self.connection_id,
            project_id=self.project_id,
        )


class ConnectionRegistry(BaseModel):
    """Collection of all configured tool connections."""

    connections: list[ToolConnection] = Field(default_factory=list)

    @classmethod
    def load(cls, path: str | Path) -> "ConnectionRegistry":
        """Load a registry from a JSON file."""
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(f"Connection registry not found: {file_path}")
        registry = cls.model_validate_json(file_path.read_text(encoding="utf-8"))
        logger.info("Loaded %d connections from %s", len(registry.connections), file_path)
        return registry

    def get_enabled(self, project_id: str | None = None) -> list[ToolConnection]:
        """Enabled connections, optionally for one project."""
        return [
            c for c in self.connections
            if c.enabled and (project_id is None or c.project_id == project_id)
        ]

    def get_by_id(self, connection_id: str) -> ToolConnection | None:
        for c in self.connections:
            if c.connection_id == connection_id:
                return c
        return None
