"""
Background engine.

Provides:
- Engine: worker thread with a private event loop
- EngineHandle / ReplyChannel: the cross-thread boundary
- Request and Event variants
- RequestRouter and RefreshScheduler
"""

from ghboard.engine.interface import (
    CloseTab,
    EngineHandle,
    Event,
    FetchBranches,
    FetchFailed,
    FetchIssueDetail,
    FetchIssues,
    FetchNotifications,
    FetchPrDetail,
    FetchPullRequests,
    FetchRepoCollaborators,
    FetchRepoLabels,
    FetchRequest,
    IssueDetailFetched,
    ItemsFetched,
    LookupFailed,
    LookupRequest,
    MutateRequest,
    MutationError,
    MutationOk,
    OpenTab,
    PrDetailFetched,
    PrefetchPrDetails,
    RefreshAll,
    ReplyChannel,
    RepoCollaboratorsFetched,
    RepoLabelsFetched,
    Request,
    fetch_request,
)
from ghboard.engine.router import RequestRouter
from ghboard.engine.runtime import Engine
from ghboard.engine.scheduler import RefreshScheduler

__all__ = [
    "Engine",
    "EngineHandle",
    "ReplyChannel",
    "RequestRouter",
    "RefreshScheduler",
    # Requests
    "Request",
    "FetchRequest",
    "FetchPullRequests",
    "FetchIssues",
    "FetchNotifications",
    "FetchBranches",
    "LookupRequest",
    "FetchPrDetail",
    "FetchIssueDetail",
    "FetchRepoLabels",
    "FetchRepoCollaborators",
    "PrefetchPrDetails",
    "MutateRequest",
    "OpenTab",
    "CloseTab",
    "RefreshAll",
    "fetch_request",
    # Events
    "Event",
    "ItemsFetched",
    "FetchFailed",
    "PrDetailFetched",
    "IssueDetailFetched",
    "RepoLabelsFetched",
    "RepoCollaboratorsFetched",
    "LookupFailed",
    "MutationOk",
    "MutationError",
]
