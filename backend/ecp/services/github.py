"""Read-only GitHub repository access for codebase indexing."""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from ecp.config import get_settings
from ecp.tracking.types import RepoFileEntry

_REPO_URL_PATTERN = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+)")


class RepositoryAccessError(RuntimeError):
    """Raised when repository metadata or file contents cannot be read."""


@dataclass(frozen=True, slots=True)
class RepositoryInfo:
    """Repository metadata shown to the onboarding assistant."""

    full_name: str
    description: str = ""
    language: str = ""
    topics: tuple[str, ...] = ()
    default_branch: str | None = None


class RepositoryReader(Protocol):
    """Protocol for repository sources the indexer can scan."""

    def list_files(self) -> list[RepoFileEntry]:
        """Return the repository file tree."""

    def read_file(self, path: str) -> str:
        """Return the text contents of one file."""

    def describe(self) -> RepositoryInfo:
        """Return repository metadata."""


def parse_repo_url(url: str) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` from a GitHub URL, or None when it is not one."""

    match = _REPO_URL_PATTERN.search(url.strip())
    if not match:
        return None
    repo = match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return match.group(1), repo


@dataclass(slots=True)
class GitHubRepositoryReader:
    """GitHub REST v3 reader using stdlib HTTP."""

    owner: str
    repo: str
    token: str | None = None
    api_base_url: str = "https://api.github.com"
    timeout_seconds: int = 30
    ref: str = "HEAD"

    def list_files(self) -> list[RepoFileEntry]:
        decoded = self._get_json(f"git/trees/{self.ref}?recursive=1")
        entries: list[RepoFileEntry] = []
        for item in decoded.get("tree") or []:
            path = item.get("path")
            if not isinstance(path, str):
                continue
            size = item.get("size")
            entries.append(
                RepoFileEntry(path=path, type=str(item.get("type", "")), size=size if isinstance(size, int) else None)
            )
        return entries

    def read_file(self, path: str) -> str:
        decoded = self._get_json(f"contents/{urllib_parse.quote(path)}")
        if decoded.get("encoding") != "base64" or not decoded.get("content"):
            raise RepositoryAccessError(f"Unsupported content encoding for {path}")
        try:
            raw = base64.b64decode(str(decoded["content"]).replace("\n", ""))
        except (binascii.Error, ValueError) as exc:
            raise RepositoryAccessError(f"Invalid base64 content for {path}") from exc
        return raw.decode("utf-8", errors="replace")

    def describe(self) -> RepositoryInfo:
        decoded = self._get_json("")
        topics = decoded.get("topics") or []
        default_branch = decoded.get("default_branch")
        return RepositoryInfo(
            full_name=str(decoded.get("full_name") or f"{self.owner}/{self.repo}"),
            description=str(decoded.get("description") or ""),
            language=str(decoded.get("language") or ""),
            topics=tuple(str(topic) for topic in topics if isinstance(topic, str)),
            default_branch=default_branch if isinstance(default_branch, str) else None,
        )

    def _get_json(self, suffix: str) -> dict[str, Any]:
        url = f"{self.api_base_url.rstrip('/')}/repos/{self.owner}/{self.repo}"
        if suffix:
            url = f"{url}/{suffix}"
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "ECP-App",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = urllib_request.Request(url=url, method="GET", headers=headers)
        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RepositoryAccessError(f"GitHub API {exc.code}: {detail[:300]}") from exc
        except urllib_error.URLError as exc:
            raise RepositoryAccessError(f"GitHub request failed: {exc.reason}") from exc
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RepositoryAccessError("GitHub returned a non-JSON response") from exc
        if not isinstance(decoded, dict):
            raise RepositoryAccessError("GitHub returned an unexpected response shape")
        return decoded


def get_github_reader(github_url: str, token: str | None = None) -> GitHubRepositoryReader:
    """Build a reader for a repository URL using configured defaults."""

    parsed = parse_repo_url(github_url)
    if parsed is None:
        raise RepositoryAccessError("Invalid GitHub URL")
    settings = get_settings()
    owner, repo = parsed
    return GitHubRepositoryReader(
        owner=owner,
        repo=repo,
        token=token or settings.github_token,
        api_base_url=settings.github_api_base_url,
        timeout_seconds=settings.github_timeout_seconds,
    )
