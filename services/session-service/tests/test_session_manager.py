from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from session_service.config import Settings
from session_service.domain.account import AccountStatus, AuthProvider
from session_service.domain.contracts import ClientInfo, RegisterInput
from session_service.domain.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from session_service.domain.service import INVALID_CREDENTIALS, OAUTH_ONLY_LOGIN, SessionManager
from session_service.security.tokens import TokenKind, hash_refresh_token

PASSWORD = "Abcd1234!"


def _register(manager: SessionManager, email: str = "alice@example.com", password: str = PASSWORD):
    return manager.register(RegisterInput(email=email, password=password, name="Alice"))


def _social_account(accounts, clock, email: str = "social@example.com"):
    return accounts.create_account(
        email=email,
        password_hash=None,
        name="Social",
        auth_provider=AuthProvider.google,
        status=AccountStatus.active,
        now=clock(),
    )


def test_register_returns_profile_without_hash_and_live_session(manager, sessions):
    result = _register(manager)

    assert result.account.email == "alice@example.com"
    assert result.account.status is AccountStatus.active
    assert result.account.auth_provider is AuthProvider.local
    assert not hasattr(result.account, "password_hash")
    record = sessions.find_refresh_token(hash_refresh_token(result.tokens.refresh_token))
    assert record is not None and record.revoked_at is None


def test_register_stores_client_metadata(manager):
    result = manager.register(
        RegisterInput(email="meta@example.com", password=PASSWORD),
        ClientInfo(user_agent="pytest-agent", ip_address="10.0.0.1"),
    )

    [session] = manager.get_active_sessions(result.account.account_id)
    assert session.user_agent == "pytest-agent"
    assert session.ip_address == "10.0.0.1"


def test_register_rejects_duplicate_email_case_insensitively(manager):
    _register(manager, email="alice@example.com")

    with pytest.raises(ConflictError):
        _register(manager, email="  ALICE@Example.com ")


def test_login_after_register_issues_distinct_session(manager, clock):
    registered = _register(manager)
    clock.advance(seconds=1)

    logged_in = manager.login("alice@example.com", PASSWORD)

    assert logged_in.account.account_id == registered.account.account_id
    assert logged_in.account.last_login_at == clock()
    assert logged_in.tokens.refresh_token != registered.tokens.refresh_token
    assert len(manager.get_active_sessions(registered.account.account_id)) == 2


def test_login_wrong_password_uses_generic_message(manager):
    _register(manager)

    with pytest.raises(UnauthorizedError) as excinfo:
        manager.login("alice@example.com", "Wrong1234!")
    assert excinfo.value.message == INVALID_CREDENTIALS


def test_login_unknown_email_uses_generic_message(manager):
    with pytest.raises(UnauthorizedError) as excinfo:
        manager.login("nobody@example.com", PASSWORD)
    assert excinfo.value.message == INVALID_CREDENTIALS


def test_login_social_account_reports_provider_hint(manager, accounts, clock):
    _social_account(accounts, clock)

    with pytest.raises(UnauthorizedError) as excinfo:
        manager.login("social@example.com", PASSWORD)
    assert excinfo.value.message == OAUTH_ONLY_LOGIN


def test_login_social_account_generic_message_when_hint_disabled(accounts, sessions, codec, verifier, clock):
    manager = SessionManager(
        accounts,
        sessions,
        codec=codec,
        verifier=verifier,
        settings=Settings(distinct_oauth_login_error=False),
        clock=clock,
    )
    _social_account(accounts, clock)

    with pytest.raises(UnauthorizedError) as excinfo:
        manager.login("social@example.com", PASSWORD)
    assert excinfo.value.message == INVALID_CREDENTIALS


def test_login_inactive_account_is_forbidden_with_status(manager, accounts, clock):
    result = _register(manager)
    accounts.set_status(result.account.account_id, AccountStatus.suspended, clock())

    with pytest.raises(ForbiddenError) as excinfo:
        manager.login("alice@example.com", PASSWORD)
    assert "suspended" in excinfo.value.message


def test_refresh_rotates_token_once(manager, clock):
    issued = _register(manager)
    clock.advance(seconds=5)

    rotated = manager.refresh(issued.tokens.refresh_token)

    assert rotated.refresh_token != issued.tokens.refresh_token
    assert rotated.access_token != issued.tokens.access_token
    with pytest.raises(UnauthorizedError):
        manager.refresh(issued.tokens.refresh_token)


def test_refresh_replay_revokes_every_session(manager, clock):
    """alice registers, rotates once, then the first token is presented again."""
    pair_a = _register(manager).tokens
    clock.advance(seconds=1)
    pair_b = manager.refresh(pair_a.refresh_token)

    with pytest.raises(UnauthorizedError):
        manager.refresh(pair_a.refresh_token)
    with pytest.raises(UnauthorizedError):
        manager.refresh(pair_b.refresh_token)


def test_refresh_replay_also_ends_other_devices(manager, clock):
    phone = _register(manager).tokens
    clock.advance(seconds=1)
    laptop = manager.login("alice@example.com", PASSWORD)
    clock.advance(seconds=1)
    manager.refresh(phone.refresh_token)

    with pytest.raises(UnauthorizedError):
        manager.refresh(phone.refresh_token)

    assert manager.get_active_sessions(laptop.account.account_id) == []
    with pytest.raises(UnauthorizedError):
        manager.refresh(laptop.tokens.refresh_token)


def test_replay_failure_is_indistinguishable_from_invalid_token(manager, clock):
    pair = _register(manager).tokens
    clock.advance(seconds=1)
    manager.refresh(pair.refresh_token)

    with pytest.raises(UnauthorizedError) as replayed:
        manager.refresh(pair.refresh_token)
    with pytest.raises(UnauthorizedError) as garbage:
        manager.refresh("not-a-token")
    assert replayed.value.message == garbage.value.message


def test_refresh_rejects_access_token(manager):
    pair = _register(manager).tokens

    with pytest.raises(UnauthorizedError):
        manager.refresh(pair.access_token)


def test_refresh_unknown_but_validly_signed_token(manager, codec):
    account = _register(manager).account
    stray = codec.issue(TokenKind.refresh, subject=account.account_id, email=account.email)

    with pytest.raises(UnauthorizedError) as excinfo:
        manager.refresh(stray)
    assert excinfo.value.message == "Refresh token not found"


def test_refresh_after_token_lifetime_fails(manager, clock):
    pair = _register(manager).tokens
    clock.advance(days=7, seconds=1)

    with pytest.raises(UnauthorizedError):
        manager.refresh(pair.refresh_token)


def test_refresh_expired_record_is_deleted(manager, sessions, clock):
    pair = _register(manager).tokens
    token_hash = hash_refresh_token(pair.refresh_token)
    record = sessions.find_refresh_token(token_hash)
    sessions._records[record.token_id].expires_at = clock() - timedelta(minutes=1)

    with pytest.raises(UnauthorizedError) as excinfo:
        manager.refresh(pair.refresh_token)
    assert "expired" in excinfo.value.message
    assert sessions.find_refresh_token(token_hash) is None


def test_refresh_for_suspended_account_is_forbidden(manager, accounts, clock):
    result = _register(manager)
    accounts.set_status(result.account.account_id, AccountStatus.suspended, clock())

    with pytest.raises(ForbiddenError):
        manager.refresh(result.tokens.refresh_token)


def test_concurrent_refresh_with_same_token_succeeds_once(manager):
    pair = _register(manager).tokens
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        try:
            manager.refresh(pair.refresh_token)
            result = "ok"
        except UnauthorizedError:
            result = "unauthorized"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["ok", "unauthorized"]


def test_logout_then_refresh_fails(manager):
    pair = _register(manager).tokens

    manager.logout(pair.refresh_token)

    with pytest.raises(UnauthorizedError):
        manager.refresh(pair.refresh_token)


def test_logout_is_idempotent(manager):
    pair = _register(manager).tokens

    manager.logout(pair.refresh_token)
    manager.logout(pair.refresh_token)
    manager.logout("never-issued")


def test_logout_all_revokes_every_live_session(manager, clock):
    result = _register(manager)
    clock.advance(seconds=1)
    manager.login("alice@example.com", PASSWORD)

    assert manager.logout_all(result.account.account_id) == 2
    assert manager.get_active_sessions(result.account.account_id) == []


def test_change_password_signs_out_everywhere(manager, clock):
    result = _register(manager)
    clock.advance(seconds=1)

    manager.change_password(result.account.account_id, PASSWORD, "Newpass5678?")

    with pytest.raises(UnauthorizedError):
        manager.refresh(result.tokens.refresh_token)
    with pytest.raises(UnauthorizedError):
        manager.login("alice@example.com", PASSWORD)
    assert manager.login("alice@example.com", "Newpass5678?").tokens.refresh_token


def test_change_password_rejects_wrong_current_password(manager):
    result = _register(manager)

    with pytest.raises(UnauthorizedError):
        manager.change_password(result.account.account_id, "Wrong1234!", "Newpass5678?")


def test_change_password_social_account_is_bad_request(manager, accounts, clock):
    account = _social_account(accounts, clock)

    with pytest.raises(BadRequestError):
        manager.change_password(account.account_id, PASSWORD, "Newpass5678?")


def test_eleventh_session_evicts_oldest(manager, clock):
    first = _register(manager)
    for _ in range(10):
        clock.advance(seconds=1)
        manager.login("alice@example.com", PASSWORD)

    live = manager.get_active_sessions(first.account.account_id)
    assert len(live) == 10
    with pytest.raises(UnauthorizedError) as excinfo:
        manager.refresh(first.tokens.refresh_token)
    assert excinfo.value.message == "Refresh token not found"


def test_active_sessions_are_newest_first_and_live_only(manager, clock):
    result = _register(manager)
    clock.advance(seconds=1)
    second = manager.login("alice@example.com", PASSWORD)
    clock.advance(seconds=1)
    third = manager.login("alice@example.com", PASSWORD)
    manager.logout(second.tokens.refresh_token)

    listed = manager.get_active_sessions(result.account.account_id)

    assert [session.created_at for session in listed] == sorted(
        (session.created_at for session in listed), reverse=True
    )
    assert len(listed) == 2
    assert listed[0].created_at == clock()
    assert third.tokens.refresh_token


def test_revoke_session_owned_by_caller(manager):
    result = _register(manager)
    [session] = manager.get_active_sessions(result.account.account_id)

    manager.revoke_session(result.account.account_id, session.session_id)

    with pytest.raises(UnauthorizedError):
        manager.refresh(result.tokens.refresh_token)


def test_revoke_session_of_other_account_is_not_found(manager):
    alice = _register(manager)
    bob = _register(manager, email="bob@example.com")
    [bob_session] = manager.get_active_sessions(bob.account.account_id)

    with pytest.raises(NotFoundError):
        manager.revoke_session(alice.account.account_id, bob_session.session_id)
    assert manager.get_active_sessions(bob.account.account_id)


def test_revoke_session_already_revoked_is_not_found(manager):
    result = _register(manager)
    [session] = manager.get_active_sessions(result.account.account_id)
    manager.revoke_session(result.account.account_id, session.session_id)

    with pytest.raises(NotFoundError):
        manager.revoke_session(result.account.account_id, session.session_id)


def test_revoke_session_expired_is_not_found(manager, clock):
    result = _register(manager)
    [session] = manager.get_active_sessions(result.account.account_id)
    clock.advance(days=8)

    with pytest.raises(NotFoundError):
        manager.revoke_session(result.account.account_id, session.session_id)


def test_authenticate_access_token(manager, accounts, clock):
    result = _register(manager)

    profile = manager.authenticate(result.tokens.access_token)
    assert profile.account_id == result.account.account_id

    with pytest.raises(UnauthorizedError):
        manager.authenticate(result.tokens.refresh_token)

    accounts.set_status(result.account.account_id, AccountStatus.suspended, clock())
    with pytest.raises(ForbiddenError):
        manager.authenticate(result.tokens.access_token)


def test_access_token_expires_after_ttl(manager, clock):
    result = _register(manager)
    clock.advance(minutes=15, seconds=1)

    with pytest.raises(UnauthorizedError):
        manager.authenticate(result.tokens.access_token)


def test_update_email(manager):
    result = _register(manager)
    _register(manager, email="taken@example.com")

    with pytest.raises(ConflictError):
        manager.update_email(result.account.account_id, "Taken@example.com", PASSWORD)
    with pytest.raises(UnauthorizedError):
        manager.update_email(result.account.account_id, "new@example.com", "Wrong1234!")

    updated = manager.update_email(result.account.account_id, " New@Example.com", PASSWORD)
    assert updated.email == "new@example.com"
    assert manager.login("new@example.com", PASSWORD)
    assert manager.is_email_available("alice@example.com")
    assert not manager.is_email_available("NEW@example.com")


def test_update_email_social_account_is_bad_request(manager, accounts, clock):
    account = _social_account(accounts, clock)

    with pytest.raises(BadRequestError):
        manager.update_email(account.account_id, "other@example.com", PASSWORD)


def test_delete_account_soft_deletes_and_revokes(manager):
    result = _register(manager)

    with pytest.raises(UnauthorizedError):
        manager.delete_account(result.account.account_id, "Wrong1234!")
    manager.delete_account(result.account.account_id, PASSWORD)

    assert manager.get_active_sessions(result.account.account_id) == []
    with pytest.raises(ForbiddenError) as excinfo:
        manager.login("alice@example.com", PASSWORD)
    assert "deleted" in excinfo.value.message
    with pytest.raises(BadRequestError):
        manager.reactivate_account(result.account.account_id)


def test_suspend_and_reactivate(manager, clock):
    result = _register(manager)

    suspended = manager.suspend_account(result.account.account_id)
    assert suspended.status is AccountStatus.suspended
    assert manager.get_active_sessions(result.account.account_id) == []

    reactivated = manager.reactivate_account(result.account.account_id)
    assert reactivated.status is AccountStatus.active
    clock.advance(seconds=1)
    assert manager.login("alice@example.com", PASSWORD).tokens.access_token


def test_unknown_account_operations_are_not_found(manager):
    with pytest.raises(NotFoundError):
        manager.change_password("missing", PASSWORD, "Newpass5678?")
    with pytest.raises(NotFoundError):
        manager.suspend_account("missing")


def test_purge_expired_sessions(manager, clock):
    _register(manager)
    _register(manager, email="bob@example.com")
    clock.advance(days=8)

    assert manager.purge_expired_sessions() == 2
    assert manager.purge_expired_sessions() == 0
