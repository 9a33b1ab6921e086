"""Tests for the command-line entry point."""

import os

import pytest

import edlink
from edlink import fail, main, split_alternate_editor
from edlink_dispatch import Outcome
from edlink_errors import FatalLocalError, NoTransportError

CLIENT_VARIABLES = (
    "ALTERNATE_EDITOR",
    "EMACSCLIENT_TRAMP",
    "EMACS_SOCKET_NAME",
    "EMACS_SERVER_FILE",
    "EDLINK_TIMEOUT",
    "EDLINK_DAEMON",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in CLIENT_VARIABLES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def execs(monkeypatch):
    """Record execvp calls; the fake returns, as if exec had failed quietly."""
    calls = []
    monkeypatch.setattr(os, "execvp", lambda file, argv: calls.append((file, argv)))
    return calls


def fake_session(monkeypatch, result):
    seen = []

    async def run_session(config):
        seen.append(config)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(edlink, "run_session", run_session)
    return seen


class TestSplitAlternateEditor:
    """ALTERNATE_EDITOR tokenizing."""

    def test_single_word(self):
        assert split_alternate_editor("vi") == ["vi"]

    def test_spaces_separate(self):
        assert split_alternate_editor("emacs  -nw") == ["emacs", "-nw"]

    def test_quoted_token_keeps_spaces(self):
        value = '"/opt/My Editor/bin/ed" -w'
        assert split_alternate_editor(value) == ["/opt/My Editor/bin/ed", "-w"]

    def test_blank(self):
        assert split_alternate_editor("   ") == []


class TestFail:
    """Tests for fail()."""

    def test_execs_alternate_editor_with_items(self, execs):
        with pytest.raises(SystemExit) as exc:
            fail("vi -f", ["a.txt", "b.txt"])
        assert execs == [("vi", ["vi", "-f", "a.txt", "b.txt"])]
        assert exc.value.code == 1

    def test_exec_error_exits(self, monkeypatch, capsys):
        def refuse(file, argv):
            raise FileNotFoundError(2, "No such file or directory")

        monkeypatch.setattr(os, "execvp", refuse)
        with pytest.raises(SystemExit) as exc:
            fail("no-such-editor", ["a.txt"])
        assert exc.value.code == 1
        assert 'error executing alternate editor "no-such-editor"' in capsys.readouterr().err

    def test_no_alternate_editor(self, execs):
        with pytest.raises(SystemExit) as exc:
            fail(None, ["a.txt"])
        assert exc.value.code == 1
        assert execs == []

    def test_empty_alternate_editor_does_not_exec(self, execs):
        with pytest.raises(SystemExit):
            fail("", ["a.txt"])
        assert execs == []


class TestMain:
    """Exit codes and error routing."""

    def test_success(self, clean_env, monkeypatch):
        seen = fake_session(monkeypatch, Outcome.SUCCESS)
        with pytest.raises(SystemExit) as exc:
            main(["-n", "+3", "a.txt"])
        assert exc.value.code == 0
        assert seen[0].items == ("+3", "a.txt")
        assert seen[0].nowait

    def test_server_error_exits_nonzero(self, clean_env, monkeypatch):
        fake_session(monkeypatch, Outcome.FAILURE)
        with pytest.raises(SystemExit) as exc:
            main(["a.txt"])
        assert exc.value.code == 1

    def test_target_required(self, clean_env, monkeypatch, capsys):
        seen = fake_session(monkeypatch, Outcome.SUCCESS)
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1
        assert seen == []
        assert "file name or argument required" in capsys.readouterr().err

    def test_eval_needs_no_target(self, clean_env, monkeypatch):
        seen = fake_session(monkeypatch, Outcome.SUCCESS)
        with pytest.raises(SystemExit) as exc:
            main(["-e"])
        assert exc.value.code == 0
        assert seen[0].eval

    def test_options_after_items(self, clean_env, monkeypatch):
        seen = fake_session(monkeypatch, Outcome.SUCCESS)
        with pytest.raises(SystemExit):
            main(["a.txt", "-s", "work"])
        assert seen[0].socket_name == "work"

    def test_no_transport_runs_alternate_editor(self, clean_env, monkeypatch, execs, capsys):
        fake_session(monkeypatch, NoTransportError("can't find socket"))
        with pytest.raises(SystemExit) as exc:
            main(["-a", "nano", "a.txt"])
        assert exc.value.code == 1
        assert execs == [("nano", ["nano", "a.txt"])]
        assert "can't find socket" not in capsys.readouterr().err

    def test_no_transport_without_alternate_editor(self, clean_env, monkeypatch, execs, capsys):
        fake_session(monkeypatch, NoTransportError("No socket or alternate editor."))
        with pytest.raises(SystemExit) as exc:
            main(["a.txt"])
        assert exc.value.code == 1
        assert execs == []
        assert "No socket or alternate editor." in capsys.readouterr().err

    def test_alternate_editor_from_environment(self, clean_env, monkeypatch, execs):
        monkeypatch.setenv("ALTERNATE_EDITOR", "vi")
        fake_session(monkeypatch, NoTransportError("can't find socket"))
        with pytest.raises(SystemExit):
            main(["a.txt"])
        assert execs == [("vi", ["vi", "a.txt"])]

    def test_fatal_error_is_reported(self, clean_env, monkeypatch, execs, capsys):
        fake_session(monkeypatch, FatalLocalError("Cannot connect even after starting the server daemon"))
        with pytest.raises(SystemExit) as exc:
            main(["-a", "", "a.txt"])
        assert exc.value.code == 1
        assert execs == []
        assert "Cannot connect even after starting" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--version"])
        assert exc.value.code == 0
        assert "edlink" in capsys.readouterr().out


class TestError:
    """Tests for error()."""

    def test_message_is_not_markup(self, capsys):
        with pytest.raises(SystemExit) as exc:
            edlink.error("bad value [bold]x[/bold]")
        assert exc.value.code == 1
        assert "bad value [bold]x[/bold]" in capsys.readouterr().err
