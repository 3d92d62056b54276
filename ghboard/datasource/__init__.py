"""
Remote clients.

Provides:
- RemoteClient: Abstract interface consumed by the engine
- GitHubRemoteClient: GitHub and GitHub Enterprise over httpx
- StubRemoteClient: Fixture-backed client with no network access
"""

from ghboard.datasource.base import (
    FetchItem,
    FetchPage,
    MutationKind,
    MutationResult,
    MutationTarget,
    PrRef,
    RemoteClient,
    parse_target,
)
from ghboard.datasource.github import GitHubRemoteClient
from ghboard.datasource.stub import StubRemoteClient

__all__ = [
    "FetchItem",
    "FetchPage",
    "MutationKind",
    "MutationResult",
    "MutationTarget",
    "PrRef",
    "RemoteClient",
    "parse_target",
    "GitHubRemoteClient",
    "StubRemoteClient",
]
