"""In-process account and session stores.

Used for local runs (``STORE_BACKEND=memory``) and the test-suite. Every
mutation happens under one lock, which makes the conditional revoke atomic
across request threads in the same way the Postgres ``UPDATE ... WHERE
revoked_at IS NULL`` is.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import replace
from datetime import datetime
from threading import RLock

from .domain.account import Account, AccountStatus, AuthProvider
from .domain.contracts import RefreshTokenRecord
from .domain.errors import ConflictError, NotFoundError


class InMemoryAccountRepository:
    """Dictionary-backed account persistence keyed by id and normalised email."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._by_email: dict[str, str] = {}
        self._lock = RLock()

    def create_account(
        self,
        *,
        email: str,
        password_hash: str | None,
        name: str | None,
        auth_provider: AuthProvider,
        status: AccountStatus,
        now: datetime,
    ) -> Account:
        with self._lock:
            if email in self._by_email:
                raise ConflictError("Email already registered")
            account = Account(
                account_id=str(uuid.uuid4()),
                email=email,
                password_hash=password_hash,
                name=name,
                status=status,
                auth_provider=auth_provider,
                created_at=now,
                updated_at=now,
            )
            self._accounts[account.account_id] = account
            self._by_email[email] = account.account_id
            return replace(account)

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return replace(account) if account else None

    def find_account_by_email(self, email: str) -> Account | None:
        with self._lock:
            account_id = self._by_email.get(email)
            return self.get_account(account_id) if account_id else None

    def record_login(self, account_id: str, at: datetime) -> None:
        with self._lock:
            account = self._get(account_id)
            account.last_login_at = at
            account.updated_at = at

    def update_password_hash(self, account_id: str, password_hash: str, at: datetime) -> None:
        with self._lock:
            account = self._get(account_id)
            account.password_hash = password_hash
            account.updated_at = at

    def update_email(self, account_id: str, email: str, at: datetime) -> Account:
        with self._lock:
            account = self._get(account_id)
            owner = self._by_email.get(email)
            if owner is not None and owner != account_id:
                raise ConflictError("Email already in use")
            del self._by_email[account.email]
            account.email = email
            account.updated_at = at
            self._by_email[email] = account_id
            return replace(account)

    def set_status(self, account_id: str, status: AccountStatus, at: datetime) -> Account:
        with self._lock:
            account = self._get(account_id)
            account.status = status
            account.updated_at = at
            return replace(account)

    def _get(self, account_id: str) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account


class InMemorySessionRepository:
    """Refresh token records indexed by token digest."""

    def __init__(self) -> None:
        self._records: dict[str, RefreshTokenRecord] = {}
        self._by_hash: dict[str, str] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()
        self._lock = RLock()

    def create_refresh_token(
        self,
        *,
        account_id: str,
        token_hash: str,
        created_at: datetime,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshTokenRecord:
        with self._lock:
            if token_hash in self._by_hash:
                raise ConflictError("refresh token already issued")
            record = RefreshTokenRecord(
                token_id=str(uuid.uuid4()),
                account_id=account_id,
                token_hash=token_hash,
                created_at=created_at,
                expires_at=expires_at,
                user_agent=user_agent,
                ip_address=ip_address,
            )
            self._records[record.token_id] = record
            self._by_hash[token_hash] = record.token_id
            self._order[record.token_id] = next(self._seq)
            return replace(record)

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        with self._lock:
            token_id = self._by_hash.get(token_hash)
            if token_id is None:
                return None
            return replace(self._records[token_id])

    def revoke_refresh_token(self, token_id: str, revoked_at: datetime) -> bool:
        with self._lock:
            record = self._records.get(token_id)
            if record is None or record.revoked_at is not None:
                return False
            record.revoked_at = revoked_at
            return True

    def revoke_all_for_account(self, account_id: str, revoked_at: datetime) -> int:
        with self._lock:
            revoked = 0
            for record in self._records.values():
                if record.account_id == account_id and record.revoked_at is None:
                    record.revoked_at = revoked_at
                    revoked += 1
            return revoked

    def delete_refresh_token(self, token_id: str) -> None:
        with self._lock:
            self._remove(token_id)

    def evict_excess(self, account_id: str, keep: int) -> int:
        with self._lock:
            active = [
                record
                for record in self._records.values()
                if record.account_id == account_id and record.revoked_at is None
            ]
            active.sort(key=lambda r: (r.created_at, self._order[r.token_id]), reverse=True)
            stale = active[keep:]
            for record in stale:
                self._remove(record.token_id)
            return len(stale)

    def list_live(self, account_id: str, now: datetime) -> list[RefreshTokenRecord]:
        with self._lock:
            return [
                replace(record)
                for record in self._records.values()
                if record.account_id == account_id and record.is_live(now)
            ]

    def find_owned(self, account_id: str, token_id: str) -> RefreshTokenRecord | None:
        with self._lock:
            record = self._records.get(token_id)
            if record is None or record.account_id != account_id:
                return None
            return replace(record)

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [token_id for token_id, record in self._records.items() if record.expires_at <= now]
            for token_id in expired:
                self._remove(token_id)
            return len(expired)

    def _remove(self, token_id: str) -> None:
        record = self._records.pop(token_id, None)
        if record is not None:
            self._by_hash.pop(record.token_hash, None)
            self._order.pop(token_id, None)
