"""Tests for commit-helper CLI (commit_helper.cli)."""

import functools
import io
import json
from unittest.mock import patch

import httpx
import pytest

from commit_helper.cli import main
from commit_helper.context import AppContext

ISSUES = [
    {
        "id": 100 + n,
        "number": n,
        "title": f"[Bug] Issue {n}",
        "state": "open",
        "html_url": f"https://github.com/acme/widget/issues/{n}",
    }
    for n in (1, 2)
]


@pytest.fixture(autouse=True)
def config_path(tmp_path, monkeypatch):
    """Point the settings file at a temp path and clear token env vars."""
    path = tmp_path / "config.yml"
    monkeypatch.setenv("COMMIT_HELPER_CONFIG", str(path))
    for name in ("GITHUB_TOKEN", "GITLAB_TOKEN", "LOCAL_GITLAB_TOKEN", "GITEE_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    return path


@pytest.fixture()
def forge(monkeypatch):
    """Route AppContext traffic to a mock transport serving ISSUES."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=ISSUES)

    monkeypatch.setattr(
        "commit_helper.cli.AppContext",
        functools.partial(AppContext, transport=httpx.MockTransport(handler)),
    )
    return requests


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1
    assert "usage" in capsys.readouterr().out.lower()


# --- remote ---


class TestRemote:
    def test_explicit_url(self, capsys):
        main(["remote", "https://github.com/acme/widget.git"])
        out = capsys.readouterr().out
        assert "forge_kind=github" in out
        assert "owner=acme" in out
        assert "api_base_url=https://api.github.com" in out

    def test_json(self, capsys):
        main(["--json", "remote", "ssh://git@192.168.1.50:2222/acme/widget.git"])
        data = json.loads(capsys.readouterr().out)
        assert data["forge_kind"] == "local-gitlab"
        assert data["host_url"] == "http://192.168.1.50"

    def test_current_repository(self, capsys):
        with patch(
            "commit_helper.cli.get_remote_url",
            return_value="git@gitee.com:acme/widget.git",
        ):
            main(["remote"])
        assert "forge_kind=gitee" in capsys.readouterr().out

    def test_no_remote(self, capsys):
        with patch("commit_helper.cli.get_remote_url", return_value=None):
            with pytest.raises(SystemExit) as exc_info:
                main(["remote"])
        assert exc_info.value.code == 1
        assert "No git remote found" in capsys.readouterr().err

    def test_unrecognized(self, capsys):
        with pytest.raises(SystemExit):
            main(["remote", "/srv/git/widget.git"])
        assert "Unrecognized remote URL" in capsys.readouterr().err


# --- issues ---


class TestIssues:
    def test_lists_issues(self, config_path, forge, capsys):
        config_path.write_text("github_token: tok\n")
        main(["issues", "--remote", "https://github.com/acme/widget.git"])
        out = capsys.readouterr().out
        assert "#1" in out
        assert "Issue 1" in out
        assert "[Bug]" not in out
        assert forge[0].headers["authorization"] == "Bearer tok"

    def test_json(self, config_path, forge, capsys):
        config_path.write_text("github_token: tok\n")
        main(["--json", "issues", "--remote", "git@github.com:acme/widget.git"])
        data = json.loads(capsys.readouterr().out)
        assert [d["number"] for d in data] == [1, 2]
        assert data[0]["url"] == "https://github.com/acme/widget/issues/1"

    def test_max(self, config_path, forge, capsys):
        config_path.write_text("github_token: tok\n")
        main(["--json", "issues", "--remote", "git@github.com:acme/widget.git", "--max", "1"])
        assert len(json.loads(capsys.readouterr().out)) == 1
        assert forge[0].url.params["per_page"] == "1"

    def test_no_issues(self, monkeypatch, config_path, capsys):
        monkeypatch.setattr(
            "commit_helper.cli.AppContext",
            functools.partial(
                AppContext,
                transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
            ),
        )
        config_path.write_text("github_token: tok\n")
        main(["issues", "--remote", "git@github.com:acme/widget.git"])
        assert "No open issues." in capsys.readouterr().out

    def test_missing_token(self, forge, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["issues", "--remote", "git@github.com:acme/widget.git"])
        assert exc_info.value.code == 1
        assert "No access token configured for github" in capsys.readouterr().err
        assert forge == []

    def test_rejects_non_positive_max(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["issues", "--max", "0"])
        assert exc_info.value.code == 2


# --- format ---


class TestFormat:
    def test_message_option(self, capsys):
        main(
            [
                "format",
                "--type",
                "feat",
                "--scope",
                "ui",
                "--issue",
                "12",
                "--message",
                "add button\n\nAdds the export button.",
            ]
        )
        assert capsys.readouterr().out == (
            "feat(ui): add button\n\nAdds the export button.\n\nCloses #12\n"
        )

    def test_reads_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("fix: crash on save\n"))
        main(["format", "--type", "fix", "--breaking"])
        out = capsys.readouterr().out
        assert out.startswith("fix!: crash on save\n\nBREAKING CHANGE:")

    def test_title_overrides_subject(self, capsys):
        main(["format", "--type", "docs", "--title", "readme", "--message", "wip"])
        assert capsys.readouterr().out == "docs: readme\n"

    def test_multiple_issues_json(self, capsys):
        main(
            [
                "--json",
                "format",
                "--type",
                "fix",
                "--issue",
                "3",
                "--issue",
                "4",
                "--message",
                "crash",
            ]
        )
        data = json.loads(capsys.readouterr().out)
        assert data["message"] == "fix: crash\n\nCloses #3\nCloses #4"

    def test_empty_message(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        with pytest.raises(SystemExit) as exc_info:
            main(["format", "--type", "feat"])
        assert exc_info.value.code == 1
        assert "No commit message given" in capsys.readouterr().err

    def test_rejects_unknown_type(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["format", "--type", "wip", "--message", "x"])
        assert exc_info.value.code == 2


# --- types ---


class TestTypes:
    def test_lists_types(self, capsys):
        main(["types"])
        out = capsys.readouterr().out
        assert out.splitlines()[0].startswith("feat")
        assert "revert" in out

    def test_json(self, capsys):
        main(["--json", "types"])
        data = json.loads(capsys.readouterr().out)
        assert data[1] == {"type": "fix", "description": "A bug fix"}
