"""
tests/test_cli.py -- The brs-admin command line against a temporary SQLite file.

Each main() call opens and closes its own stores, so the database has to be
a file; a shared-memory database would vanish between calls.
"""

from __future__ import annotations

import json

import pytest

from main import main


@pytest.fixture()
def db(tmp_path) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    assert main(["seed", "--db", url]) == 0
    return url


def _json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


def test_seed_is_idempotent(db, capsys) -> None:
    capsys.readouterr()
    assert main(["seed", "--db", db, "--format", "json"]) == 0
    assert _json(capsys) == {"roles_created": 0, "permissions_created": 0}


def test_create_user_and_whoami(db, capsys) -> None:
    assert main(["create-user", "Ops@Example.org", "--role", "district_admin", "--password", "long-enough", "--db", db]) == 0
    assert main(["grant", "district_admin", "export.view", "--db", db]) == 0
    capsys.readouterr()

    assert main(["whoami", "ops@example.org", "--db", db, "--format", "json"]) == 0
    data = _json(capsys)
    assert data["role_name"] == "District Administrator"
    assert data["role_level"] == 5
    assert data["permissions"] == ["export.view"]


def test_create_user_rejects_short_password(db, capsys) -> None:
    assert main(["create-user", "a@example.org", "--role", "viewer", "--password", "short", "--db", db]) == 1
    assert "at least 8" in capsys.readouterr().err


def test_create_user_unknown_role(db, capsys) -> None:
    rc = main(["create-user", "a@example.org", "--role", "nope", "--password", "long-enough", "--db", db, "--format", "json"])
    assert rc == 1
    assert "Unknown role" in _json(capsys)["error"]


def test_duplicate_account(db, capsys) -> None:
    args = ["create-user", "dup@example.org", "--role", "viewer", "--password", "long-enough", "--db", db]
    assert main(args) == 0
    assert main(args) == 1


def test_grant_then_revoke(db, capsys) -> None:
    capsys.readouterr()
    assert main(["grant", "auditor", "audit.view", "--db", db, "--format", "json"]) == 0
    assert _json(capsys)["changed"] is True
    assert main(["grant", "auditor", "audit.view", "--db", db, "--format", "json"]) == 0
    assert _json(capsys)["changed"] is False
    assert main(["revoke", "auditor", "audit.view", "--db", db, "--format", "json"]) == 0
    assert _json(capsys)["changed"] is True


def test_grant_unknown_permission(db) -> None:
    assert main(["grant", "auditor", "nothing", "--db", db]) == 1


def test_check_exit_codes(db, capsys) -> None:
    main(["create-user", "d@example.org", "--role", "district_admin", "--password", "long-enough", "--db", db])
    main(["grant", "district_admin", "export.view", "--db", db])
    assert main(["check", "d@example.org", "/admin/exports", "--db", db]) == 0
    assert main(["check", "d@example.org", "/admin/permissions", "--db", db]) == 3
    assert "DENIED" in capsys.readouterr().out


def test_whoami_unknown_account(db) -> None:
    assert main(["whoami", "ghost@example.org", "--db", db]) == 1


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 1
    assert "brs-admin" in capsys.readouterr().out
