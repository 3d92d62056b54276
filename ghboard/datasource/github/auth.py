"""
Token resolution for GitHub hosts.

Order:
1. GH_TOKEN / GITHUB_TOKEN for github.com, GH_ENTERPRISE_TOKEN for other hosts
2. `gh auth token --hostname <host>`

Tokens are returned to the transport only; they are never logged or stored.
"""

import subprocess

from loguru import logger

from ghboard.services.errors import AuthError
from ghboard.settings import Settings, global_settings
from ghboard.types import DEFAULT_HOST

GH_CLI_TIMEOUT = 5.0


def token_from_settings(host: str, settings: Settings) -> str:
    if host == DEFAULT_HOST:
        return settings.github_token or settings.github_token_fallback
    return settings.enterprise_token


def token_from_gh_cli(host: str) -> str:
    """Ask the gh CLI for its stored token; empty string when unavailable."""
    try:
        result = subprocess.run(
            ["gh", "auth", "token", "--hostname", host],
            capture_output=True,
            text=True,
            timeout=GH_CLI_TIMEOUT,
            check=False,
        )
    except FileNotFoundError:
        logger.debug("gh CLI not installed")
        return ""
    except subprocess.TimeoutExpired:
        logger.warning(f"gh auth token timed out for {host}")
        return ""

    if result.returncode != 0:
        logger.debug(f"gh auth token exited with status {result.returncode} for {host}")
        return ""
    return result.stdout.strip()


def resolve_token(host: str, settings: Settings | None = None) -> str:
    """
    Resolve a bearer token for host.

    Raises:
        AuthError: no token could be found
    """
    token = token_from_settings(host, settings or global_settings) or token_from_gh_cli(host)
    if not token:
        hint = "GH_TOKEN / GITHUB_TOKEN" if host == DEFAULT_HOST else "GH_ENTERPRISE_TOKEN"
        raise AuthError(
            f'no GitHub token found for host "{host}". Run `gh auth login` or set {hint}.',
            host=host,
        )
    return token
