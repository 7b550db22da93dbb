"""Unit tests for watched-target parsing."""

from __future__ import annotations

import pytest

from issues_watcher.github import (
    ProjectOwnerKind,
    ProjectTarget,
    RepositoryTarget,
    parse_target,
)


class TestParseTarget:
    """Tests for ``parse_target``."""

    def test_repository_slug(self) -> None:
        """``owner/name`` slugs are repository targets."""
        target = parse_target("pingcap/parser")

        assert target == RepositoryTarget(owner="pingcap", name="parser")
        assert target.key == "pingcap/parser"

    @pytest.mark.parametrize(
        ("raw", "kind", "owner"),
        [
            (
                "https://github.com/orgs/pingcap/projects/40",
                ProjectOwnerKind.ORGANIZATION,
                "pingcap",
            ),
            (
                "https://github.com/users/octocat/projects/3/",
                ProjectOwnerKind.USER,
                "octocat",
            ),
        ],
    )
    def test_owner_project_urls(
        self, raw: str, kind: ProjectOwnerKind, owner: str
    ) -> None:
        """Organisation and user boards are parsed from their URLs."""
        target = parse_target(raw)

        assert isinstance(target, ProjectTarget)
        assert target.owner_kind is kind
        assert target.owner == owner
        assert target.key == raw.rstrip("/")

    def test_repository_project_url(self) -> None:
        """Repository boards keep the repository name."""
        target = parse_target("https://github.com/pingcap/tidb/projects/7")

        assert target == ProjectTarget(
            owner_kind=ProjectOwnerKind.REPOSITORY,
            owner="pingcap",
            repository="tidb",
            number=7,
        )
        assert target.key == "https://github.com/pingcap/tidb/projects/7"

    def test_surrounding_whitespace_is_ignored(self) -> None:
        """Keys copied with stray whitespace still parse."""
        assert parse_target("  octo/reef \n").key == "octo/reef"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "octo",
            "octo/reef/extra",
            "https://gitlab.com/orgs/octo/projects/1",
            "https://github.com/orgs/octo/projects/x",
        ],
    )
    def test_rejects_unknown_forms(self, raw: str) -> None:
        """Anything else is rejected with a helpful message."""
        with pytest.raises(ValueError, match="unrecognised target"):
            parse_target(raw)
