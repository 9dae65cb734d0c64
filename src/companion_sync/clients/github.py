"""GitHub client that reads deadline tables out of course repository READMEs."""

import base64
import logging
import re
from datetime import datetime
from typing import List, Optional

from requests import Session

from .base import RemoteClient
from .types import CourseRepo, GitHubDeadline, RepoReadme


logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"

DEADLINE_ROW = re.compile(r"\|\s*Deadline[^|]*\|\s*([^|]+)\|", re.IGNORECASE)
HEADING = re.compile(r"^#{1,2}\s+(.+)$", re.MULTILINE)

DATE_FORMATS = [
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
    "%B %d, %Y %H:%M",
    "%B %d, %Y",
    "%b %d, %Y",
    "%A %B %d, %Y %H:%M",
    "%A %B %d, %Y",
]


def parse_deadline_date(raw: str) -> Optional[datetime]:
    cleaned = raw.replace("*", "").replace("|", "").strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
    return None


def derive_task_name(readme: RepoReadme, repo: CourseRepo) -> str:
    """Task title from the first heading, the README's folder, or the course."""
    match = HEADING.search(readme.content)
    if match:
        return match.group(1).strip()
    parts = readme.path.split("/")
    if len(parts) > 1 and parts[-2]:
        return parts[-2]
    return f"{repo.course} lab"


def parse_deadlines_from_markdown(readme: RepoReadme, repo: CourseRepo) -> List[GitHubDeadline]:
    """
    Extract rows like ``| Deadline | 2026-03-01 23:59 |`` from a README.

    Cells that cannot be read as a date are still returned with the raw text
    so the bridge reports them as skipped.
    """
    task = derive_task_name(readme, repo)
    deadlines = []
    for index, match in enumerate(DEADLINE_ROW.finditer(readme.content)):
        raw = match.group(1).strip()
        parsed = parse_deadline_date(raw)
        deadlines.append(GitHubDeadline(
            remote_id=f"{repo.owner}/{repo.repo}:{readme.path}:{index}",
            course=repo.course,
            task=task,
            due=parsed.isoformat() if parsed else raw,
        ))
    return deadlines


class GitHubCourseClient(RemoteClient):
    integration = "github"
    accept = "application/vnd.github.v3+json"

    def __init__(self, token: Optional[str] = None, repos: Optional[List[CourseRepo]] = None,
                 timeout: float = 20.0, session: Optional[Session] = None,
                 base_url: str = GITHUB_API):
        super().__init__(base_url=base_url, token=token, timeout=timeout, session=session)
        self.repos = list(repos or [])

    def _headers(self):
        headers = super()._headers()
        headers["X-GitHub-Api-Version"] = "2022-11-28"
        headers["User-Agent"] = "companion-sync"
        return headers

    def get_default_branch(self, repo: CourseRepo) -> str:
        data = self.get_json(f"/repos/{repo.owner}/{repo.repo}")
        return (data or {}).get("default_branch") or "main"

    def _file_content(self, entry: dict) -> str:
        if entry.get("download_url"):
            return self._request(entry["download_url"]).text
        data = self._request(entry["url"]).json()
        return base64.b64decode((data.get("content") or "").replace("\n", "")).decode("utf-8")

    def get_readmes(self, repo: CourseRepo) -> List[RepoReadme]:
        """READMEs at the repository root and one directory level down."""
        branch = self.get_default_branch(repo)
        root = self.get_json(f"/repos/{repo.owner}/{repo.repo}/contents", params={"ref": branch}) or []

        readmes = []
        for entry in root:
            name = (entry.get("name") or "").lower()
            if entry.get("type") == "file" and name.startswith("readme"):
                readmes.append(RepoReadme(path=entry.get("path") or entry["name"], content=self._file_content(entry)))
            elif entry.get("type") == "dir" and entry.get("url"):
                nested = self._request(entry["url"], params={"ref": branch}).json() or []
                for child in nested:
                    child_name = (child.get("name") or "").lower()
                    if child.get("type") == "file" and child_name.startswith("readme"):
                        readmes.append(RepoReadme(path=child.get("path") or child["name"],
                                                  content=self._file_content(child)))
        return readmes

    def get_deadlines(self) -> List[GitHubDeadline]:
        deadlines: List[GitHubDeadline] = []
        for repo in self.repos:
            for readme in self.get_readmes(repo):
                deadlines.extend(parse_deadlines_from_markdown(readme, repo))
        logger.debug(f"Found {len(deadlines)} deadline rows across {len(self.repos)} repositories")
        return deadlines
