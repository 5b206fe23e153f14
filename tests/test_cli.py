"""
tests/test_cli.py -- Tests for the administrative CLI in main.py.

Each test points the CLI at a fresh SQLite file with --db-url and checks
exit codes, output and the resulting store state.
"""

from __future__ import annotations

import time

import pytest

import main as cli
from auth.models import UserSnapshot
from auth.otp import OtpLedger
from auth.sessions import SessionRegistry
from auth.store import UserStore


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _admin_args(db_url: str, email: str = "root@example.com", *extra: str) -> list[str]:
    return ["--db-url", db_url, "create-admin", "--email", email, "--name", "Root", "--password", "rootpass1", *extra]


class TestCreateAdmin:
    def test_creates_first_admin(self, db_url: str, capsys) -> None:
        assert cli.main(_admin_args(db_url)) == 0
        assert "Admin created: root@example.com" in capsys.readouterr().out
        store = UserStore(db_url)
        try:
            admin = store.find_by_email("root@example.com")
            assert admin is not None and admin.role == "admin"
        finally:
            store.close()

    def test_refuses_second_admin_without_force(self, db_url: str, capsys) -> None:
        cli.main(_admin_args(db_url))
        assert cli.main(_admin_args(db_url, "second@example.com")) == 1
        assert "--force" in capsys.readouterr().out

    def test_force_adds_another_admin(self, db_url: str) -> None:
        cli.main(_admin_args(db_url))
        assert cli.main(_admin_args(db_url, "second@example.com", "--force")) == 0
        store = UserStore(db_url)
        try:
            assert store.count_admins() == 2
        finally:
            store.close()

    def test_duplicate_email_fails(self, db_url: str, capsys) -> None:
        cli.main(_admin_args(db_url))
        assert cli.main(_admin_args(db_url, "root@example.com", "--force")) == 1
        assert "already exists" in capsys.readouterr().out

    def test_short_password_rejected(self, db_url: str) -> None:
        args = ["--db-url", db_url, "create-admin", "--email", "a@example.com", "--name", "A", "--password", "123"]
        assert cli.main(args) == 1

    def test_prompts_when_password_omitted(self, db_url: str, monkeypatch) -> None:
        answers = iter(["prompted1", "prompted1"])
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))
        args = ["--db-url", db_url, "create-admin", "--email", "p@example.com", "--name", "P"]
        assert cli.main(args) == 0

    def test_prompt_mismatch_fails(self, db_url: str, monkeypatch) -> None:
        answers = iter(["prompted1", "different1"])
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))
        args = ["--db-url", db_url, "create-admin", "--email", "p@example.com", "--name", "P"]
        assert cli.main(args) == 1


class TestListUsers:
    def test_empty(self, db_url: str, capsys) -> None:
        assert cli.main(["--db-url", db_url, "list-users"]) == 0
        assert "No users." in capsys.readouterr().out

    def test_lists_created_admin(self, db_url: str, capsys) -> None:
        cli.main(_admin_args(db_url))
        capsys.readouterr()
        assert cli.main(["--db-url", db_url, "list-users"]) == 0
        out = capsys.readouterr().out
        assert "root@example.com" in out
        assert "admin" in out
        assert "1 user(s)." in out


class TestPurge:
    def test_purges_expired_rows(self, db_url: str, capsys) -> None:
        now = time.time()
        registry = SessionRegistry(db_url, clock=lambda: now - 2 * 24 * 3600)
        ledger = OtpLedger(db_url)
        try:
            registry.create_session("stale", UserSnapshot(id="u", email="u@example.com", name="U", role="user"))
            ledger.store("+911234567890", "1234", now - 60)
            ledger.store("+15551234567", "9999", now + 300)
        finally:
            registry.close()
            ledger.close()

        assert cli.main(["--db-url", db_url, "purge"]) == 0
        assert "Purged 1 expired session(s) and 1 expired OTP record(s)." in capsys.readouterr().out


def test_no_command_prints_help(capsys) -> None:
    assert cli.main([]) == 1
    assert "create-admin" in capsys.readouterr().out
