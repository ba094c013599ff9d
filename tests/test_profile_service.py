"""Unit tests for auth/profile.py -- self-service profile view, edit, and delete.

Covers:
- update_profile() keeps the session snapshot in sync with the stored record
- empty fields and an email owned by someone else are refused
- delete_profile() removes the record and every session of that user
- a repeated delete is harmless
- a failing delete leaves the session intact
- a session-store failure after the record is gone does not raise
"""

from unittest.mock import MagicMock

import pytest

from auth.errors import DuplicateEmailError, PersistenceError, UserNotFound, ValidationError
from auth.models import SessionContext
from auth.profile import ProfileService
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore


@pytest.fixture
def alice_ctx(auth_service: AuthService) -> SessionContext:
    auth_service.register("alice", "a@x.com", "secret1")
    return auth_service.login("a@x.com", "secret1")


class TestView:
    def test_returns_stored_record(self, profile_service: ProfileService, alice_ctx: SessionContext) -> None:
        user = profile_service.view_profile(alice_ctx.user)
        assert user.id == alice_ctx.user.id
        assert user.username == "alice"

    def test_missing_record(
        self, profile_service: ProfileService, user_store: UserStore, alice_ctx: SessionContext
    ) -> None:
        user_store.delete_user(alice_ctx.user.id)
        with pytest.raises(UserNotFound):
            profile_service.view_profile(alice_ctx.user)


class TestUpdate:
    def test_session_follows_record(
        self,
        profile_service: ProfileService,
        user_store: UserStore,
        session_store: SessionStore,
        alice_ctx: SessionContext,
    ) -> None:
        snapshot = profile_service.update_profile(alice_ctx, "  alicia ", "alicia@x.com")

        stored = user_store.get_by_id(alice_ctx.user.id)
        assert (stored.username, stored.email) == ("alicia", "alicia@x.com")
        assert (snapshot.username, snapshot.email) == ("alicia", "alicia@x.com")
        assert alice_ctx.user == snapshot
        assert session_store.get(alice_ctx.token) == snapshot

    def test_role_is_not_editable(self, profile_service: ProfileService, alice_ctx: SessionContext) -> None:
        snapshot = profile_service.update_profile(alice_ctx, "alicia", "alicia@x.com")
        assert snapshot.role == "user"

    def test_expired_session_is_logged(
        self, profile_service: ProfileService, session_store: SessionStore, alice_ctx: SessionContext, caplog
    ) -> None:
        session_store.destroy(alice_ctx.token)
        profile_service.update_profile(alice_ctx, "alicia", "alicia@x.com")
        assert "without a live session" in caplog.text
        assert session_store.get(alice_ctx.token) is None

    @pytest.mark.parametrize("username,email", [("", "a@x.com"), ("alice", ""), ("  ", "  "), (None, None)])
    def test_empty_fields(
        self, profile_service: ProfileService, session_store: SessionStore, alice_ctx: SessionContext, username, email
    ) -> None:
        before = session_store.get(alice_ctx.token)
        with pytest.raises(ValidationError):
            profile_service.update_profile(alice_ctx, username, email)
        assert session_store.get(alice_ctx.token) == before

    def test_taken_email(
        self,
        auth_service: AuthService,
        profile_service: ProfileService,
        user_store: UserStore,
        alice_ctx: SessionContext,
    ) -> None:
        auth_service.register("bob", "b@x.com", "secret2")
        with pytest.raises(DuplicateEmailError):
            profile_service.update_profile(alice_ctx, "alice", "b@x.com")
        assert user_store.get_by_id(alice_ctx.user.id).email == "a@x.com"
        assert alice_ctx.user.email == "a@x.com"

    def test_record_gone(
        self, profile_service: ProfileService, user_store: UserStore, alice_ctx: SessionContext
    ) -> None:
        user_store.delete_user(alice_ctx.user.id)
        with pytest.raises(UserNotFound):
            profile_service.update_profile(alice_ctx, "alicia", "alicia@x.com")


class TestDelete:
    def test_removes_record_and_sessions(
        self,
        auth_service: AuthService,
        profile_service: ProfileService,
        user_store: UserStore,
        session_store: SessionStore,
        alice_ctx: SessionContext,
    ) -> None:
        other_device = auth_service.login("a@x.com", "secret1")

        profile_service.delete_profile(alice_ctx)

        assert user_store.get_by_id(alice_ctx.user.id) is None
        assert session_store.get(alice_ctx.token) is None
        assert session_store.get(other_device.token) is None

    def test_delete_twice(self, profile_service: ProfileService, alice_ctx: SessionContext) -> None:
        profile_service.delete_profile(alice_ctx)
        profile_service.delete_profile(alice_ctx)

    def test_failed_delete_keeps_session(self, session_store: SessionStore, alice_ctx: SessionContext) -> None:
        users = MagicMock(spec=UserStore)
        users.delete_user.side_effect = PersistenceError()
        service = ProfileService(users, session_store)

        with pytest.raises(PersistenceError):
            service.delete_profile(alice_ctx)
        assert session_store.get(alice_ctx.token) == alice_ctx.user

    def test_session_cleanup_failure_after_delete(
        self, user_store: UserStore, alice_ctx: SessionContext, caplog
    ) -> None:
        sessions = MagicMock(spec=SessionStore)
        sessions.destroy.side_effect = PersistenceError()
        service = ProfileService(user_store, sessions)

        service.delete_profile(alice_ctx)

        assert user_store.get_by_id(alice_ctx.user.id) is None
        assert "Session cleanup failed" in caplog.text
