"""GitHub REST/GraphQL remote client."""

from ghboard.datasource.github.auth import resolve_token
from ghboard.datasource.github.client import GitHubRemoteClient

__all__ = ["GitHubRemoteClient", "resolve_token"]
