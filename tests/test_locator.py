"""Tests for transport location."""

import os

import pytest

from edlink_errors import ProtocolViolation, TransportError, TransportKind
from edlink_locator import (
    AUTH_KEY_LENGTH,
    Local,
    Remote,
    candidates,
    locate_local,
    locate_remote,
    parse_server_file,
)

TOKEN = bytes(range(33, 33 + AUTH_KEY_LENGTH))


def make_socket_file(tmpdir, name="server", uid=None):
    uid = os.geteuid() if uid is None else uid
    d = tmpdir / f"emacs{uid}"
    d.mkdir(exist_ok=True)
    path = d / name
    path.write_bytes(b"")
    return path


class TestParseServerFile:
    """Tests for parse_server_file()."""

    def test_extracts_port_and_exact_token(self):
        remote = parse_server_file(b"127.0.0.1:4567\n" + TOKEN)
        assert remote.host == "127.0.0.1"
        assert remote.port == 4567
        assert remote.auth_token == TOKEN

    def test_token_may_contain_newlines(self):
        token = b"\n" * 10 + TOKEN[10:]
        remote = parse_server_file(b"127.0.0.1:80\n" + token)
        assert remote.auth_token == token
        assert len(remote.auth_token) == AUTH_KEY_LENGTH

    def test_port_followed_by_pid(self):
        remote = parse_server_file(b"10.0.0.2:39847 12345\n" + TOKEN)
        assert remote.host == "10.0.0.2"
        assert remote.port == 39847

    def test_extra_bytes_after_token_ignored(self):
        remote = parse_server_file(b"127.0.0.1:1\n" + TOKEN + b"junk")
        assert remote.auth_token == TOKEN

    def test_missing_colon_is_invalid(self):
        with pytest.raises(ProtocolViolation, match="invalid configuration info"):
            parse_server_file(b"localhost\n" + TOKEN)

    def test_short_token_is_invalid(self):
        with pytest.raises(ProtocolViolation, match="cannot read authentication info"):
            parse_server_file(b"127.0.0.1:1\n" + TOKEN[:10])

    def test_repr_hides_token(self):
        assert "auth_token" not in repr(Remote("127.0.0.1", 1, TOKEN))


class TestLocateRemote:
    """Tests for locate_remote()."""

    def test_relative_name_under_home(self, tmp_path):
        server_dir = tmp_path / ".emacs.d" / "server"
        server_dir.mkdir(parents=True)
        (server_dir / "server").write_bytes(b"127.0.0.1:9000\n" + TOKEN)
        remote = locate_remote("server", {"HOME": str(tmp_path)})
        assert remote == Remote("127.0.0.1", 9000, TOKEN)

    def test_absolute_name(self, tmp_path):
        path = tmp_path / "srv"
        path.write_bytes(b"127.0.0.1:9001\n" + TOKEN)
        assert locate_remote(str(path), {}).port == 9001

    def test_missing_file(self, tmp_path):
        assert locate_remote("server", {"HOME": str(tmp_path)}) is None

    def test_no_home(self):
        assert locate_remote("server", {}) is None


class TestLocateLocal:
    """Tests for locate_local()."""

    def test_name_resolves_in_tmpdir(self, tmp_path):
        path = make_socket_file(tmp_path)
        assert locate_local("server", {"TMPDIR": str(tmp_path)}) == Local(str(path))

    def test_absolute_path_used_as_is(self, tmp_path):
        path = tmp_path / "sock"
        path.write_bytes(b"")
        assert locate_local(str(path), {}) == Local(str(path))

    def test_missing_socket_is_unreachable(self, tmp_path):
        with pytest.raises(TransportError) as exc:
            locate_local("server", {"TMPDIR": str(tmp_path)})
        assert exc.value.kind is TransportKind.UNREACHABLE
        assert "have you started the server" in str(exc.value)

    def test_foreign_owner_is_rejected(self, tmp_path, monkeypatch):
        fake_uid = os.geteuid() + 4242
        monkeypatch.setattr(os, "geteuid", lambda: fake_uid)
        make_socket_file(tmp_path, uid=fake_uid)
        with pytest.raises(TransportError) as exc:
            locate_local("server", {"TMPDIR": str(tmp_path)})
        assert exc.value.kind is TransportKind.AUTH_REJECTED

    def test_name_too_long(self, tmp_path):
        with pytest.raises(TransportError) as exc:
            locate_local("/" + "x" * 200, {})
        assert exc.value.kind is TransportKind.NAME_TOO_LONG

    def test_su_falls_back_to_login_user(self, tmp_path, monkeypatch):
        import pwd

        real_uid = os.geteuid()
        fake_uid = real_uid + 4242
        monkeypatch.setattr(os, "geteuid", lambda: fake_uid)
        monkeypatch.setattr(pwd, "getpwnam", lambda name: pwd.struct_passwd(
            (name, "x", real_uid, 0, "", "/", "/bin/sh")))
        path = make_socket_file(tmp_path, uid=real_uid)
        env = {"TMPDIR": str(tmp_path), "LOGNAME": "someone"}
        # The fallback socket exists but belongs to real_uid, not "us".
        with pytest.raises(TransportError) as exc:
            locate_local("server", env)
        assert exc.value.kind is TransportKind.AUTH_REJECTED
        assert path.exists()


class TestCandidates:
    """Tests for candidates()."""

    def test_implicit_order(self):
        assert candidates(None, None) == [("local", "server"), ("remote", "server")]

    def test_only_server_file_never_tries_local(self):
        assert candidates(None, "work") == [("remote", "work")]

    def test_only_socket(self):
        assert candidates("work", None) == [("local", "work")]

    def test_both_explicit(self):
        assert candidates("a", "b") == [("local", "a"), ("remote", "b")]
