"""Parse watched-target keys into GitHub repositories and project boards.

Repository targets use the ``owner/name`` slug. Project boards use the URL
shown in the browser:

- ``https://github.com/orgs/<org>/projects/<n>``
- ``https://github.com/users/<user>/projects/<n>``
- ``https://github.com/<owner>/<repo>/projects/<n>``
"""

from __future__ import annotations

import dataclasses
import enum
import re


class ProjectOwnerKind(enum.StrEnum):
    """GraphQL entry point that owns a project board."""

    ORGANIZATION = "organization"
    USER = "user"
    REPOSITORY = "repository"


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryTarget:
    """A repository whose issues are watched."""

    owner: str
    name: str

    @property
    def key(self) -> str:
        """Return the ``owner/name`` target key."""
        return f"{self.owner}/{self.name}"


@dataclasses.dataclass(frozen=True, slots=True)
class ProjectTarget:
    """A Projects board whose items are watched."""

    owner_kind: ProjectOwnerKind
    owner: str
    number: int
    repository: str | None = None

    @property
    def key(self) -> str:
        """Return the canonical project URL used as target key."""
        if self.owner_kind is ProjectOwnerKind.ORGANIZATION:
            return f"https://github.com/orgs/{self.owner}/projects/{self.number}"
        if self.owner_kind is ProjectOwnerKind.USER:
            return f"https://github.com/users/{self.owner}/projects/{self.number}"
        return (
            f"https://github.com/{self.owner}/{self.repository}/projects/{self.number}"
        )


type GitHubTarget = RepositoryTarget | ProjectTarget

_SEGMENT = r"[A-Za-z0-9_.-]+"
_REPO_PATTERN = re.compile(rf"^(?P<owner>{_SEGMENT})/(?P<name>{_SEGMENT})$")
_OWNER_PROJECT_PATTERN = re.compile(
    rf"^https://github\.com/(?P<kind>orgs|users)/(?P<owner>{_SEGMENT})"
    r"/projects/(?P<number>\d+)/?$"
)
_REPO_PROJECT_PATTERN = re.compile(
    rf"^https://github\.com/(?P<owner>{_SEGMENT})/(?P<repo>{_SEGMENT})"
    r"/projects/(?P<number>\d+)/?$"
)


def parse_target(raw: str) -> GitHubTarget:
    """Parse a configured target string.

    Parameters
    ----------
    raw
        Repository slug or project board URL.

    Returns
    -------
    RepositoryTarget | ProjectTarget
        The parsed target.

    Raises
    ------
    ValueError
        If ``raw`` is neither a repository slug nor a project URL.

    Examples
    --------
    >>> parse_target("pingcap/parser").key
    'pingcap/parser'
    >>> parse_target("https://github.com/orgs/pingcap/projects/40").number
    40

    """
    text = raw.strip()
    if match := _REPO_PATTERN.match(text):
        return RepositoryTarget(owner=match["owner"], name=match["name"])
    if match := _OWNER_PROJECT_PATTERN.match(text):
        kind = (
            ProjectOwnerKind.ORGANIZATION
            if match["kind"] == "orgs"
            else ProjectOwnerKind.USER
        )
        return ProjectTarget(
            owner_kind=kind, owner=match["owner"], number=int(match["number"])
        )
    if match := _REPO_PROJECT_PATTERN.match(text):
        return ProjectTarget(
            owner_kind=ProjectOwnerKind.REPOSITORY,
            owner=match["owner"],
            repository=match["repo"],
            number=int(match["number"]),
        )
    msg = (
        f"unrecognised target {raw!r}: expected 'owner/name' or a "
        "https://github.com/.../projects/<n> URL"
    )
    raise ValueError(msg)
