"""Session manager orchestrating credentials, token issuance, and refresh rotation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from .account import Account, AccountProfile, AccountStatus, AuthProvider, normalize_email
from .contracts import AuthResult, ClientInfo, RegisterInput, RefreshTokenRecord, SessionInfo, TokenPair
from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from .stores import AccountStore, SessionStore
from ..config import Settings, get_settings
from ..security.passwords import CredentialVerifier
from ..security.tokens import TokenCodec, TokenKind, hash_refresh_token

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
OAUTH_ONLY_LOGIN = "Account uses social login. Please sign in with your provider."
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Account authentication and refresh-token lifecycle.

    The manager keeps no mutable state of its own; every decision is made
    against the account and session stores, which must provide an atomic
    conditional revoke (see :meth:`SessionStore.revoke_refresh_token`).
    """

    def __init__(
        self,
        accounts: AccountStore,
        sessions: SessionStore,
        *,
        codec: TokenCodec | None = None,
        verifier: CredentialVerifier | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._settings = settings or get_settings()
        self._accounts = accounts
        self._sessions = sessions
        self._codec = codec or TokenCodec(self._settings, clock=lambda: clock().timestamp())
        self._verifier = verifier or CredentialVerifier()
        self._clock = clock

    # -- authentication -----------------------------------------------------

    def register(self, payload: RegisterInput, client: ClientInfo | None = None) -> AuthResult:
        """Create a local account and open its first session."""
        email = normalize_email(payload.email)
        if self._accounts.find_account_by_email(email) is not None:
            raise ConflictError("Email already registered")

        password_hash = self._verifier.hash(payload.password)
        account = self._accounts.create_account(
            email=email,
            password_hash=password_hash,
            name=payload.name,
            auth_provider=AuthProvider.local,
            status=AccountStatus.active,
            now=self._clock(),
        )
        tokens = self._open_session(account, client)
        logger.info("account registered account_id=%s", account.account_id)
        return AuthResult(account=account.to_profile(), tokens=tokens)

    def login(self, email: str, password: str, client: ClientInfo | None = None) -> AuthResult:
        """Authenticate with email and password and open a new session.

        Unknown emails and wrong passwords share one message so the response
        cannot be used to probe which addresses are registered.
        """
        account = self._accounts.find_account_by_email(normalize_email(email))
        if account is None:
            logger.warning("login failed: unknown email")
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not account.has_password:
            logger.warning("login failed: password login on social account account_id=%s", account.account_id)
            if self._settings.distinct_oauth_login_error:
                raise UnauthorizedError(OAUTH_ONLY_LOGIN)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not self._verifier.compare(password, account.password_hash):
            logger.warning("login failed: bad password account_id=%s", account.account_id)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not account.is_active:
            raise ForbiddenError(f"Account is {account.status.value}")

        now = self._clock()
        self._accounts.record_login(account.account_id, now)
        account.last_login_at = now
        tokens = self._open_session(account, client)
        logger.info("login succeeded account_id=%s", account.account_id)
        return AuthResult(account=account.to_profile(), tokens=tokens)

    def authenticate(self, access_token: str) -> AccountProfile:
        """Resolve a bearer access token to the active account it was issued for."""
        payload = self._codec.verify(access_token, TokenKind.access)
        if payload is None:
            raise UnauthorizedError("Invalid or expired access token")
        account = self._accounts.get_account(payload.subject)
        if account is None:
            raise UnauthorizedError("Account not found")
        if not account.is_active:
            raise ForbiddenError(f"Account is {account.status.value}")
        return account.to_profile()

    # -- refresh rotation ---------------------------------------------------

    def refresh(self, refresh_token: str, client: ClientInfo | None = None) -> TokenPair:
        """Exchange a refresh token for a new pair, revoking the presented one.

        Presenting a token that was already rotated or revoked is treated as
        replay: every live session of the owning account is revoked before
        the request is rejected.
        """
        payload = self._codec.verify(refresh_token, TokenKind.refresh)
        if payload is None:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        record = self._sessions.find_refresh_token(hash_refresh_token(refresh_token))
        if record is None:
            raise UnauthorizedError("Refresh token not found")

        now = self._clock()
        if record.revoked_at is not None:
            self._handle_replay(record, now)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        if record.expires_at <= now:
            self._sessions.delete_refresh_token(record.token_id)
            raise UnauthorizedError("Refresh token has expired")

        account = self._accounts.get_account(record.account_id)
        if account is None:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        if not account.is_active:
            raise ForbiddenError(f"Account is {account.status.value}")

        # The conditional revoke is the single point that decides which of
        # several concurrent presentations of this token wins.
        if not self._sessions.revoke_refresh_token(record.token_id, now):
            self._handle_replay(record, now)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        tokens = self._open_session(account, client)
        logger.info("refresh token rotated account_id=%s previous=%s", account.account_id, record.token_id)
        return tokens

    def _handle_replay(self, record: RefreshTokenRecord, now: datetime) -> None:
        revoked = self._sessions.revoke_all_for_account(record.account_id, now)
        logger.warning(
            "refresh token replay detected account_id=%s token_id=%s sessions_revoked=%d",
            record.account_id,
            record.token_id,
            revoked,
        )

    # -- session teardown ---------------------------------------------------

    def logout(self, refresh_token: str) -> None:
        """Revoke the session behind ``refresh_token``; unknown or spent tokens are ignored."""
        record = self._sessions.find_refresh_token(hash_refresh_token(refresh_token))
        if record is None or record.revoked_at is not None:
            return
        if self._sessions.revoke_refresh_token(record.token_id, self._clock()):
            logger.info("logout account_id=%s token_id=%s", record.account_id, record.token_id)

    def logout_all(self, account_id: str) -> int:
        """Revoke every live session of an account; returns how many were revoked."""
        revoked = self._sessions.revoke_all_for_account(account_id, self._clock())
        logger.info("logout-all account_id=%s sessions_revoked=%d", account_id, revoked)
        return revoked

    def change_password(self, account_id: str, current_password: str, new_password: str) -> None:
        """Replace the password and sign the account out everywhere, this device included."""
        account = self._require_account(account_id)
        if not account.has_password:
            raise BadRequestError("Account uses social login. Cannot change password.")
        if not self._verifier.compare(current_password, account.password_hash):
            raise UnauthorizedError("Current password is incorrect")

        self._accounts.update_password_hash(account_id, self._verifier.hash(new_password), self._clock())
        self.logout_all(account_id)
        logger.info("password changed account_id=%s", account_id)

    def get_active_sessions(self, account_id: str) -> list[SessionInfo]:
        """List the account's live sessions, newest first."""
        records = self._sessions.list_live(account_id, self._clock())
        records.sort(key=lambda record: record.created_at, reverse=True)
        return [SessionInfo.from_record(record) for record in records]

    def revoke_session(self, account_id: str, session_id: str) -> None:
        """Revoke one session owned by ``account_id``.

        Sessions belonging to someone else are reported as missing so their
        existence is not confirmed to the caller; so are ones already revoked
        or expired.
        """
        now = self._clock()
        record = self._sessions.find_owned(account_id, session_id)
        if record is None or not record.is_live(now):
            raise NotFoundError("Session not found")
        if self._sessions.revoke_refresh_token(record.token_id, now):
            logger.info("session revoked account_id=%s token_id=%s", account_id, session_id)

    def purge_expired_sessions(self) -> int:
        """Delete expired session records; returns how many were removed."""
        purged = self._sessions.purge_expired(self._clock())
        logger.info("expired sessions purged count=%d", purged)
        return purged

    # -- account lifecycle --------------------------------------------------

    def update_email(self, account_id: str, new_email: str, password: str) -> AccountProfile:
        """Move the account to a new email after re-confirming the password."""
        account = self._require_account(account_id)
        if not account.has_password:
            raise BadRequestError("Account uses social login. Cannot change email.")
        if not self._verifier.compare(password, account.password_hash):
            raise UnauthorizedError("Invalid password")

        email = normalize_email(new_email)
        existing = self._accounts.find_account_by_email(email)
        if existing is not None and existing.account_id != account_id:
            raise ConflictError("Email already in use")
        return self._accounts.update_email(account_id, email, self._clock()).to_profile()

    def delete_account(self, account_id: str, password: str | None) -> None:
        """Soft-delete the account and revoke all of its sessions."""
        account = self._require_account(account_id)
        if account.has_password and not self._verifier.compare(password or "", account.password_hash):
            raise UnauthorizedError("Invalid password")
        self._accounts.set_status(account_id, AccountStatus.deleted, self._clock())
        self.logout_all(account_id)
        logger.info("account deleted account_id=%s", account_id)

    def suspend_account(self, account_id: str) -> AccountProfile:
        self._require_account(account_id)
        account = self._accounts.set_status(account_id, AccountStatus.suspended, self._clock())
        self.logout_all(account_id)
        logger.info("account suspended account_id=%s", account_id)
        return account.to_profile()

    def reactivate_account(self, account_id: str) -> AccountProfile:
        account = self._require_account(account_id)
        if account.status == AccountStatus.deleted:
            raise BadRequestError("Cannot reactivate deleted account")
        return self._accounts.set_status(account_id, AccountStatus.active, self._clock()).to_profile()

    def is_email_available(self, email: str) -> bool:
        return self._accounts.find_account_by_email(normalize_email(email)) is None

    # -- helpers ------------------------------------------------------------

    def _require_account(self, account_id: str) -> Account:
        account = self._accounts.get_account(account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account

    def _open_session(self, account: Account, client: ClientInfo | None) -> TokenPair:
        """Issue a token pair and persist its refresh half, then enforce the session cap."""
        client = client or ClientInfo()
        tokens = TokenPair(
            access_token=self._codec.issue(TokenKind.access, subject=account.account_id, email=account.email),
            refresh_token=self._codec.issue(TokenKind.refresh, subject=account.account_id, email=account.email),
        )
        now = self._clock()
        self._sessions.create_refresh_token(
            account_id=account.account_id,
            token_hash=hash_refresh_token(tokens.refresh_token),
            created_at=now,
            expires_at=now + timedelta(seconds=self._codec.ttl_seconds(TokenKind.refresh)),
            user_agent=client.user_agent,
            ip_address=client.ip_address,
        )
        evicted = self._sessions.evict_excess(account.account_id, self._settings.max_sessions_per_account)
        if evicted:
            logger.info("evicted old sessions account_id=%s count=%d", account.account_id, evicted)
        return tokens
