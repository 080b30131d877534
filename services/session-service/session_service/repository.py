"""Postgres repositories for accounts and refresh-token sessions."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool, PoolTimeout

from .domain.account import Account, AccountStatus, AuthProvider
from .domain.contracts import RefreshTokenRecord
from .domain.errors import ConflictError, NotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = (
    "account_id, email, password_hash, name, status, auth_provider, created_at, updated_at, last_login_at"
)
_TOKEN_COLUMNS = (
    "token_id, account_id, token_hash, created_at, expires_at, revoked_at, user_agent, ip_address"
)


class _PostgresRepository:
    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        """Yield a cursor on a pooled connection, committing on success.

        Connectivity failures are re-raised as :class:`StoreUnavailableError`
        so callers never mistake an outage for a rejected credential.
        """
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    yield cur
                conn.commit()
        except (psycopg.OperationalError, PoolTimeout) as exc:
            logger.error("session store unavailable: %s", exc)
            raise StoreUnavailableError("session store unavailable") from exc


class AccountRepository(_PostgresRepository):
    """Postgres-backed account persistence."""

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
        """Insert an account; a duplicate email surfaces as :class:`ConflictError`."""
        account_id = str(uuid.uuid4())
        try:
            with self._cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO accounts (account_id, email, password_hash, name, status, auth_provider, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (account_id, email, password_hash, name, status.value, auth_provider.value, now, now),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise ConflictError("Email already registered") from exc
        return self._map_account(row)

    def get_account(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        with self._cursor() as cur:
            cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s", (account_id,))
            row = cur.fetchone()
        return self._map_account(row) if row else None

    def find_account_by_email(self, email: str) -> Account | None:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = %s", (email,))
            row = cur.fetchone()
        return self._map_account(row) if row else None

    def record_login(self, account_id: str, at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE accounts SET last_login_at = %s, updated_at = %s WHERE account_id = %s",
                (at, at, account_id),
            )

    def update_password_hash(self, account_id: str, password_hash: str, at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE accounts SET password_hash = %s, updated_at = %s WHERE account_id = %s",
                (password_hash, at, account_id),
            )

    def update_email(self, account_id: str, email: str, at: datetime) -> Account:
        try:
            with self._cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE accounts SET email = %s, updated_at = %s
                    WHERE account_id = %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (email, at, account_id),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise ConflictError("Email already in use") from exc
        if row is None:
            raise NotFoundError("Account not found")
        return self._map_account(row)

    def set_status(self, account_id: str, status: AccountStatus, at: datetime) -> Account:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE accounts SET status = %s, updated_at = %s
                WHERE account_id = %s
                RETURNING {_ACCOUNT_COLUMNS}
                """,
                (status.value, at, account_id),
            )
            row = cur.fetchone()
        if row is None:
            raise NotFoundError("Account not found")
        return self._map_account(row)

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            email=row[1],
            password_hash=row[2],
            name=row[3],
            status=AccountStatus(row[4]),
            auth_provider=AuthProvider(row[5]),
            created_at=row[6],
            updated_at=row[7],
            last_login_at=row[8],
        )


class SessionRepository(_PostgresRepository):
    """Postgres-backed refresh token persistence."""

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
        """Persist a hashed refresh token associated with an account."""
        token_id = str(uuid.uuid4())
        try:
            with self._cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO refresh_tokens (token_id, account_id, token_hash, created_at, expires_at, user_agent, ip_address)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_TOKEN_COLUMNS}
                    """,
                    (token_id, account_id, token_hash, created_at, expires_at, user_agent, ip_address),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise ConflictError("refresh token already issued") from exc
        return self._map_token(row)

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        """Return the record for the provided hash, revoked or not."""
        with self._cursor() as cur:
            cur.execute(f"SELECT {_TOKEN_COLUMNS} FROM refresh_tokens WHERE token_hash = %s", (token_hash,))
            row = cur.fetchone()
        return self._map_token(row) if row else None

    def revoke_refresh_token(self, token_id: str, revoked_at: datetime) -> bool:
        """Mark the token revoked if it is not already; returns whether this call did so."""
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = %s
                WHERE token_id = %s AND revoked_at IS NULL
                RETURNING token_id
                """,
                (revoked_at, token_id),
            )
            row = cur.fetchone()
        return row is not None

    def revoke_all_for_account(self, account_id: str, revoked_at: datetime) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = %s
                WHERE account_id = %s AND revoked_at IS NULL
                """,
                (revoked_at, account_id),
            )
            return cur.rowcount

    def delete_refresh_token(self, token_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM refresh_tokens WHERE token_id = %s", (token_id,))

    def evict_excess(self, account_id: str, keep: int) -> int:
        """Delete the oldest unrevoked tokens beyond the newest ``keep``."""
        with self._cursor() as cur:
            cur.execute(
                """
                DELETE FROM refresh_tokens
                WHERE token_id IN (
                    SELECT token_id
                    FROM refresh_tokens
                    WHERE account_id = %s AND revoked_at IS NULL
                    ORDER BY created_at DESC, issued_seq DESC
                    OFFSET %s
                )
                """,
                (account_id, keep),
            )
            return cur.rowcount

    def list_live(self, account_id: str, now: datetime) -> list[RefreshTokenRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_TOKEN_COLUMNS}
                FROM refresh_tokens
                WHERE account_id = %s AND revoked_at IS NULL AND expires_at > %s
                ORDER BY created_at DESC, issued_seq DESC
                """,
                (account_id, now),
            )
            rows = cur.fetchall()
        return [self._map_token(row) for row in rows]

    def find_owned(self, account_id: str, token_id: str) -> RefreshTokenRecord | None:
        try:
            uuid.UUID(token_id)
        except ValueError:
            return None
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_TOKEN_COLUMNS} FROM refresh_tokens WHERE token_id = %s AND account_id = %s",
                (token_id, account_id),
            )
            row = cur.fetchone()
        return self._map_token(row) if row else None

    def purge_expired(self, now: datetime) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM refresh_tokens WHERE expires_at <= %s", (now,))
            return cur.rowcount

    def _map_token(self, row: tuple) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            token_id=str(row[0]),
            account_id=str(row[1]),
            token_hash=row[2],
            created_at=row[3],
            expires_at=row[4],
            revoked_at=row[5],
            user_agent=row[6],
            ip_address=row[7],
        )
