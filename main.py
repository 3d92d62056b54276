"""
ghboard engine demo runner.

Starts the engine, opens a few filter tabs and polls their reply channels on
a short interval the way the dashboard's render loop does.
"""

import argparse
import time

from loguru import logger

from ghboard.datasource import GitHubRemoteClient, RemoteClient, StubRemoteClient
from ghboard.engine import (
    Engine,
    FetchFailed,
    ItemsFetched,
    OpenTab,
    ReplyChannel,
    fetch_request,
)
from ghboard.settings import global_settings
from ghboard.types import FilterSpec, ViewKind

POLL_INTERVAL = 0.1

DEMO_TABS = [
    ("my-prs", ViewKind.PRS, FilterSpec(title="My pull requests", filters="author:@me is:open")),
    ("review", ViewKind.PRS, FilterSpec(title="Needs review", filters="review-requested:@me is:open")),
    ("issues", ViewKind.ISSUES, FilterSpec(title="Assigned issues", filters="assignee:@me is:open")),
    ("inbox", ViewKind.NOTIFICATIONS, FilterSpec(title="Inbox", filters="-reason:subscribed")),
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the ghboard engine against a few demo tabs")
    parser.add_argument("--stub", action="store_true", help="serve fixture data, no network")
    parser.add_argument("--host", default=global_settings.default_host, help="GitHub host")
    parser.add_argument("--repo", default=None, help="scope every tab to owner/name")
    parser.add_argument("--timeout", type=float, default=30.0, help="seconds to wait for results")
    return parser.parse_args()


def render(event: ItemsFetched | FetchFailed) -> None:
    if isinstance(event, FetchFailed):
        logger.error(f"[{event.filter_id}] {event.error.user_message()}")
        return

    logger.info(f"[{event.filter_id}] {len(event.items)} {event.view.value}")
    for item in event.items[:10]:
        if event.view is ViewKind.NOTIFICATIONS:
            marker = "*" if item.unread else " "
            logger.info(f"  {marker} {item.repo_name:30} {item.reason.display:18} {item.title}")
        else:
            repo = item.repo.full_name if item.repo else ""
            logger.info(f"    {repo}#{item.number:<6} {item.title}")
    if event.rate_limit:
        logger.info(f"  rate limit: {event.rate_limit.remaining}/{event.rate_limit.limit}")


def main() -> None:
    args = parse_args()
    client: RemoteClient = StubRemoteClient() if args.stub else GitHubRemoteClient(
        timeout=global_settings.request_timeout, debug=global_settings.debug
    )

    logger.info("Starting ghboard engine...")
    engine = Engine(client)
    handle = engine.start()

    pending: dict[str, ReplyChannel] = {}
    with handle:
        for filter_id, view, spec in DEMO_TABS:
            spec = spec.model_copy(update={"host": args.host, "scope": args.repo})
            reply = ReplyChannel()
            handle.send(OpenTab(filter_id, view, spec, reply))
            handle.send(fetch_request(view, filter_id, spec, reply))
            pending[filter_id] = reply

        deadline = time.monotonic() + args.timeout
        try:
            while pending and time.monotonic() < deadline:
                for filter_id, reply in list(pending.items()):
                    event = reply.poll()
                    if event is not None:
                        render(event)
                        del pending[filter_id]
                time.sleep(POLL_INTERVAL)
        except KeyboardInterrupt:
            logger.info("Received interrupt signal, shutting down...")

        if pending:
            logger.warning(f"No result for {', '.join(pending)} within {args.timeout}s")
        logger.info(f"Engine health: {engine.health()}")

    engine.join(timeout=10)
    logger.info("ghboard engine stopped")


if __name__ == "__main__":
    main()
