"""
Secret Vault: SQLAlchemy-backed store for commitment pre-images.

One row per game id. The secret is the only copy that makes a committed move
revealable, so rows are written before the caller is told the game exists and
removed only on successful reveal, cancellation, or expiry (30 days).

Before createGame is sent the pre-image is stored in pending_secrets keyed by
commitment hash. promote() moves it under the game id once the id is known; a
pending row whose id never resolved is matched later against the creator's
games by commitment hash.
Storage is a local SQLite file (DUEL_VAULT_DB_PATH); it is not shared across devices.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from sqlalchemy import Column, Integer, String, create_engine, delete, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from elements_duel.duel_logging import get_logger
from elements_duel.game.models import Move

logger = get_logger(__name__)

Base = declarative_base()

SECRET_TTL_SEC = 30 * 24 * 60 * 60


class GameSecretRow(Base):
    """Commitment pre-image for one game created from this device."""

    __tablename__ = "game_secrets"

    game_id = Column(Integer, primary_key=True, autoincrement=False)
    move = Column(Integer, nullable=False)
    secret = Column(String(512), nullable=False)
    commitment_hash = Column(String(66), nullable=False)  # 0x-prefixed hex
    created_at = Column(Integer, nullable=False, index=True)  # Unix seconds


class PendingSecretRow(Base):
    """Pre-image of a createGame whose game id is not known yet."""

    __tablename__ = "pending_secrets"

    commitment_hash = Column(String(66), primary_key=True)
    move = Column(Integer, nullable=False)
    secret = Column(String(512), nullable=False)
    tx_hash = Column(String(66), nullable=True)
    created_at = Column(Integer, nullable=False, index=True)


def _hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


@dataclass(frozen=True)
class PendingSecret:
    commitment_hash: bytes
    move: Move
    secret: str
    tx_hash: str | None
    created_at: int

    @classmethod
    def from_row(cls, row: PendingSecretRow) -> "PendingSecret":
        return cls(
            commitment_hash=bytes.fromhex(str(row.commitment_hash).removeprefix("0x")),
            move=Move(int(row.move)),
            secret=str(row.secret),
            tx_hash=row.tx_hash,
            created_at=int(row.created_at),
        )


@dataclass(frozen=True)
class StoredSecret:
    game_id: int
    move: Move
    secret: str
    commitment_hash: bytes
    created_at: int

    @classmethod
    def from_row(cls, row: GameSecretRow) -> "StoredSecret":
        return cls(
            game_id=int(row.game_id),
            move=Move(int(row.move)),
            secret=str(row.secret),
            commitment_hash=bytes.fromhex(str(row.commitment_hash).removeprefix("0x")),
            created_at=int(row.created_at),
        )


class SecretVault:
    """
    Keyed by game id. save() overwrites, remove() is idempotent, purge_expired()
    drops entries older than the TTL and returns how many were removed.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        clock: Callable[[], float] = time.time,
        ttl_sec: int = SECRET_TTL_SEC,
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock
        self._ttl_sec = ttl_sec
        self._engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
        )
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        Base.metadata.create_all(bind=self._engine)
        logger.info("secret_vault_init", path=str(self._db_path))

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Context manager for a single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def save(self, game_id: int, move: Move | int, secret: str, commitment_hash: bytes) -> StoredSecret:
        if game_id <= 0:
            raise ValueError("game_id must be positive")
        if not secret:
            raise ValueError("secret must be non-empty")
        move = Move(int(move))
        now = int(self._clock())
        with self._session_scope() as session:
            row = session.get(GameSecretRow, game_id)
            if row is None:
                row = GameSecretRow(game_id=game_id)
                session.add(row)
            row.move = int(move)
            row.secret = secret
            row.commitment_hash = "0x" + bytes(commitment_hash).hex()
            row.created_at = now
        logger.info("secret_saved", game_id=game_id)
        return StoredSecret(
            game_id=game_id,
            move=move,
            secret=secret,
            commitment_hash=bytes(commitment_hash),
            created_at=now,
        )

    def get(self, game_id: int) -> StoredSecret | None:
        with self._session_scope() as session:
            row = session.get(GameSecretRow, game_id)
            return StoredSecret.from_row(row) if row is not None else None

    def has(self, game_id: int) -> bool:
        return self.get(game_id) is not None

    def remove(self, game_id: int) -> bool:
        """Delete the entry. Returns True if a row existed."""
        with self._session_scope() as session:
            result = session.execute(delete(GameSecretRow).where(GameSecretRow.game_id == game_id))
            removed = (result.rowcount or 0) > 0
        if removed:
            logger.info("secret_removed", game_id=game_id)
        return removed

    def list_all(self) -> list[StoredSecret]:
        with self._session_scope() as session:
            rows = session.execute(select(GameSecretRow).order_by(GameSecretRow.game_id)).scalars().all()
            return [StoredSecret.from_row(r) for r in rows]

    def save_pending(
        self,
        commitment_hash: bytes,
        move: Move | int,
        secret: str,
        tx_hash: str | None = None,
    ) -> PendingSecret:
        if not secret:
            raise ValueError("secret must be non-empty")
        move = Move(int(move))
        key = _hex(commitment_hash)
        now = int(self._clock())
        with self._session_scope() as session:
            row = session.get(PendingSecretRow, key)
            if row is None:
                row = PendingSecretRow(commitment_hash=key, created_at=now)
                session.add(row)
            row.move = int(move)
            row.secret = secret
            if tx_hash is not None:
                row.tx_hash = tx_hash
            created_at = int(row.created_at)
            stored_tx = row.tx_hash
        logger.info("pending_secret_saved", commitment=key[:10], tx_hash=tx_hash)
        return PendingSecret(
            commitment_hash=bytes(commitment_hash),
            move=move,
            secret=secret,
            tx_hash=stored_tx,
            created_at=created_at,
        )

    def promote(self, commitment_hash: bytes, game_id: int) -> StoredSecret | None:
        """
        Move a pending pre-image under game_id in one transaction.

        Returns None when no pending row exists for the commitment hash.
        """
        if game_id <= 0:
            raise ValueError("game_id must be positive")
        key = _hex(commitment_hash)
        now = int(self._clock())
        with self._session_scope() as session:
            pending = session.get(PendingSecretRow, key)
            if pending is None:
                return None
            row = session.get(GameSecretRow, game_id)
            if row is None:
                row = GameSecretRow(game_id=game_id)
                session.add(row)
            row.move = int(pending.move)
            row.secret = str(pending.secret)
            row.commitment_hash = key
            row.created_at = now
            stored = StoredSecret(
                game_id=game_id,
                move=Move(int(pending.move)),
                secret=str(pending.secret),
                commitment_hash=bytes(commitment_hash),
                created_at=now,
            )
            session.delete(pending)
        logger.info("secret_saved", game_id=game_id, from_pending=True)
        return stored

    def discard_pending(self, commitment_hash: bytes) -> bool:
        with self._session_scope() as session:
            result = session.execute(
                delete(PendingSecretRow).where(PendingSecretRow.commitment_hash == _hex(commitment_hash))
            )
            return (result.rowcount or 0) > 0

    def list_pending(self) -> list[PendingSecret]:
        with self._session_scope() as session:
            rows = (
                session.execute(select(PendingSecretRow).order_by(PendingSecretRow.created_at))
                .scalars()
                .all()
            )
            return [PendingSecret.from_row(r) for r in rows]

    def purge_expired(self) -> int:
        """Drop game and pending rows at least TTL old. Returns the total removed."""
        cutoff = int(self._clock()) - self._ttl_sec
        with self._session_scope() as session:
            result = session.execute(delete(GameSecretRow).where(GameSecretRow.created_at <= cutoff))
            count = int(result.rowcount or 0)
            result = session.execute(delete(PendingSecretRow).where(PendingSecretRow.created_at <= cutoff))
            count += int(result.rowcount or 0)
        logger.info("secret_vault_purge", removed=count, cutoff=cutoff)
        return count

    def close(self) -> None:
        self._engine.dispose()
