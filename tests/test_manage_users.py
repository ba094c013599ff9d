"""Tests for scripts/manage_users.py -- the out-of-band admin CLI."""

import pytest

from auth.models import MAX_FAILED_ATTEMPTS, ROLE_ADMIN, ROLE_USER
from scripts.manage_users import main


@pytest.fixture
def alice_id(auth_service, user_store) -> int:
    auth_service.register("alice", "a@x.com", "secret1")
    return user_store.get_by_email("a@x.com").id


def test_list(db_url, alice_id, capsys):
    assert main(["--db-url", db_url, "list"]) == 0
    out = capsys.readouterr().out
    assert "a@x.com" in out
    assert "active" in out


def test_promote_writes_audit_row(db_url, alice_id, user_store, capsys):
    assert main(["--db-url", db_url, "promote", "a@x.com"]) == 0
    assert "is now 'admin'" in capsys.readouterr().out

    assert user_store.get_by_id(alice_id).role == ROLE_ADMIN
    history = user_store.get_role_history(alice_id)
    assert len(history) == 1
    assert history[0].actor.startswith("cli:")


def test_promote_twice(db_url, alice_id, capsys):
    main(["--db-url", db_url, "promote", "a@x.com"])
    assert main(["--db-url", db_url, "promote", "a@x.com"]) == 0
    assert "already has role" in capsys.readouterr().out


def test_demote_last_admin_is_refused(db_url, alice_id, user_store, capsys):
    main(["--db-url", db_url, "promote", "a@x.com"])
    assert main(["--db-url", db_url, "promote", "a@x.com", "--role", ROLE_USER]) == 1
    assert "Cannot demote the last admin." in capsys.readouterr().err
    assert user_store.get_by_id(alice_id).role == ROLE_ADMIN


def test_unlock(db_url, alice_id, user_store, capsys):
    for _ in range(MAX_FAILED_ATTEMPTS):
        user_store.record_failed_login(alice_id)
    assert main(["--db-url", db_url, "unlock", "a@x.com"]) == 0
    assert "unlocked" in capsys.readouterr().out
    assert user_store.get_by_id(alice_id).is_locked is False


def test_unknown_email(db_url, user_store, capsys):
    assert main(["--db-url", db_url, "unlock", "nobody@x.com"]) == 1
    assert "No account" in capsys.readouterr().err


def test_unknown_role_is_rejected_by_argparse(db_url):
    with pytest.raises(SystemExit):
        main(["--db-url", db_url, "promote", "a@x.com", "--role", "superuser"])
