"""Repository host client: default branch and last-push lookups."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from plugaudit.audit.errors import (
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryResolutionFailure,
    UnexpectedStatusError,
)

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Repository metadata relevant to change detection."""

    branch: str
    pushed_at: int  # epoch millis, 0 if the host did not report one
    changed_since_last_audit: bool
    support_link: str


def _to_epoch_millis(value: str | None) -> int:
    if not value:
        return 0
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return int(dt.timestamp() * 1000)


def support_link(repo: str) -> str:
    return f"https://github.com/{repo}/issues"


def raw_file_url(raw_url: str, repo: str, branch: str, file_name: str) -> str:
    """URL of ``file_name`` at the tip of ``branch`` on the raw file host."""
    return f"{raw_url.rstrip('/')}/{repo}/{branch}/{file_name}"


class RepositoryResolver:
    """Looks up repositories on the host API.

    One GET per repository. Failures raise a
    :class:`~plugaudit.audit.errors.RepositoryResolutionFailure` subclass; the
    caller decides how to fall back.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: str = "https://api.github.com",
        token: str | None = None,
    ):
        """Initialize resolver.

        Args:
            client: Shared async HTTP client
            api_url: Repository host API base URL
            token: Optional bearer credential
        """
        self._client = client
        self.api_url = api_url.rstrip("/")
        self.token = token

    async def resolve(self, repo: str, prior_last_updated: int | None) -> Resolution:
        """Resolve ``repo`` ("owner/name") to its default branch and push time.

        Args:
            repo: Repository identifier
            prior_last_updated: Watermark from the previous audit, if any

        Returns:
            Resolution with ``changed_since_last_audit`` computed against the watermark

        Raises:
            RepositoryNotFoundError: On 404
            RepositoryForbiddenError: On 403
            UnexpectedStatusError: On any other non-200 status
            RepositoryResolutionFailure: On network errors or unusable bodies
        """
        url = f"{self.api_url}/repos/{repo}"
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise RepositoryResolutionFailure(
                f"Network error fetching repository details for {repo}: {e}"
            ) from e

        if response.status_code == 404:
            raise RepositoryNotFoundError(f"Repository not found at {url}")
        if response.status_code == 403:
            raise RepositoryForbiddenError(
                f"Repository access forbidden (403) for {repo}. Consider supplying a "
                "GitHub access token (--token or GITHUB_TOKEN) to raise the rate limit."
            )
        if response.status_code != 200:
            raise UnexpectedStatusError(
                f"Failed to fetch repository details for {repo}. "
                f"Status code: {response.status_code}",
                status=response.status_code,
            )

        try:
            data = response.json()
            branch = data["default_branch"]
            pushed_at = _to_epoch_millis(data.get("pushed_at"))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise RepositoryResolutionFailure(
                f"Error parsing repository data for {repo}: {e}"
            ) from e
        if not isinstance(branch, str) or not branch:
            raise RepositoryResolutionFailure(f"Repository {repo} reported no default branch")

        changed = pushed_at != prior_last_updated
        if changed:
            logger.debug(
                "Repository %s was updated. Old: %s, New: %s", repo, prior_last_updated, pushed_at
            )
        else:
            logger.debug("Repository %s not updated. Last push: %s", repo, pushed_at)

        return Resolution(
            branch=branch,
            pushed_at=pushed_at,
            changed_since_last_audit=changed,
            support_link=support_link(repo),
        )
