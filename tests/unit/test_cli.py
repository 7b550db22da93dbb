"""Command-line behaviour tests."""

from __future__ import annotations

import os
import subprocess
import sys
import typing as typ

import httpx
import pytest

from issues_watcher import cli
from issues_watcher.notify import DeliveryError
from issues_watcher.runtime import build_runtime
from tests.helpers.femtologging_capture import capture_femto_logs
from tests.helpers.watch_builders import RecordingDispatcher

if typ.TYPE_CHECKING:
    from pathlib import Path

    from issues_watcher.config import WatcherConfig
    from issues_watcher.runtime import WatcherRuntime

_CONFIG = """
github-token = "ghp-test"
github-data = "{data_dir}"
repos = ["octo/reef"]

[retry]
max-retries = 1
"""


def _run_cli(args: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603 - fixed argv
        [sys.executable, "-m", "issues_watcher.cli", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        env={
            key: value
            for key, value in os.environ.items()
            if not key.startswith("ISSUES_WATCHER_")
        },
    )


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    """Write a minimal valid configuration file."""
    path = tmp_path / "config.toml"
    data_dir = (tmp_path / "data").as_posix()
    path.write_text(_CONFIG.format(data_dir=data_dir), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep in-process runs from reconfiguring global logging."""

    def _configure(level: str | None) -> tuple[str, bool]:
        valid = (level or "").upper() in {"", "DEBUG", "INFO", "WARNING", "ERROR"}
        return ("INFO", not valid)

    monkeypatch.setattr(cli, "configure_logging", _configure)


class _FailingDispatcher:
    async def send_message(self, text: str) -> None:
        del text
        raise DeliveryError.api_error("channel_not_found")


class TestConfigErrors:
    """Invalid configuration exits before anything runs."""

    def test_reports_every_issue(self, tmp_path: Path) -> None:
        """Each configuration problem is printed to stderr."""
        path = tmp_path / "bad.toml"
        path.write_text('repos = ["octo/reef", "octo/reef"]\n', encoding="utf-8")

        result = _run_cli(["--config", str(path)], cwd=tmp_path)

        assert result.returncode == 1
        assert "Invalid configuration" in result.stderr
        assert "github-token" in result.stderr
        assert "duplicate target octo/reef" in result.stderr

    def test_missing_file_in_process(self, tmp_path: Path) -> None:
        """A missing configuration file returns exit code 1."""
        assert cli.main(["--config", str(tmp_path / "absent.toml")]) == 1


class TestPing:
    """Tests for ``--ping``."""

    def test_ping_without_slack_is_logged(self, config_path: Path) -> None:
        """Without a Slack token the ping is written to the log."""
        with capture_femto_logs("issues_watcher.notify.log_dispatcher") as capture:
            exit_code = cli.main(["--config", str(config_path), "--ping", "hello"])

        assert exit_code == 0
        capture.wait_for_count(1)
        assert capture.records[0].message == "hello"

    def test_ping_uses_configured_dispatcher(
        self, config_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The message is handed to the dispatcher unchanged."""
        dispatcher = RecordingDispatcher()
        monkeypatch.setattr(cli, "build_dispatcher", lambda config: dispatcher)

        exit_code = cli.main(["-c", str(config_path), "-p", "deploy finished"])

        assert exit_code == 0
        assert dispatcher.messages == ["deploy finished"]

    def test_ping_failure_exits_nonzero(
        self, config_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Delivery errors are logged and turned into exit code 1."""
        failing = _FailingDispatcher()
        monkeypatch.setattr(cli, "build_dispatcher", lambda config: failing)

        with capture_femto_logs("issues_watcher.cli") as capture:
            exit_code = cli.main(["-c", str(config_path), "-p", "hello"])

        assert exit_code == 1
        capture.wait_for_count(1)
        assert "channel_not_found" in capture.records[-1].message

    def test_invalid_log_level_is_reported(
        self, config_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An unknown ``--log-level`` is reported and INFO is used."""
        recording = RecordingDispatcher()
        monkeypatch.setattr(cli, "build_dispatcher", lambda config: recording)

        with capture_femto_logs("issues_watcher.cli") as capture:
            cli.main(["-c", str(config_path), "--log-level", "chatty", "-p", "hi"])

        capture.wait_for_count(1)
        assert any("chatty" in record.message for record in capture.records)


class TestOnce:
    """Tests for ``--once``."""

    @pytest.mark.parametrize(("status", "expected"), [(200, 0), (401, 1)])
    def test_exit_code_reflects_targets(
        self,
        config_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        status: int,
        expected: int,
    ) -> None:
        """One pass exits 0 when every target succeeded, 1 otherwise."""

        def _handler(request: httpx.Request) -> httpx.Response:
            if status != 200:
                return httpx.Response(status)
            if b"viewer" in request.content:
                return httpx.Response(200, json={"data": {"viewer": {"login": "bot"}}})
            empty = {"pageInfo": {"hasNextPage": False}, "nodes": []}
            return httpx.Response(
                200, json={"data": {"repository": {"issues": empty}}}
            )

        def _build(config: WatcherConfig) -> WatcherRuntime:
            transport = httpx.MockTransport(_handler)
            return build_runtime(
                config, github_http_client=httpx.AsyncClient(transport=transport)
            )

        monkeypatch.setattr(cli, "build_runtime", _build)

        assert cli.main(["-c", str(config_path), "--once"]) == expected
