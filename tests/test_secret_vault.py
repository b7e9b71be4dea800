"""
Tests for SecretVault (SQLite via SQLAlchemy). Uses tmp_path DB and a fake clock.
"""

from __future__ import annotations

from elements_duel.game.commitment import commit
from elements_duel.game.models import Move
from elements_duel.vault import SECRET_TTL_SEC, SecretVault


def test_save_and_get_round_trip(vault, clock):
    digest = commit(Move.FIRE, "alpha")
    vault.save(7, Move.FIRE, "alpha", digest)
    stored = vault.get(7)
    assert stored is not None
    assert stored.game_id == 7
    assert stored.move is Move.FIRE
    assert stored.secret == "alpha"
    assert stored.commitment_hash == digest
    assert stored.created_at == int(clock())
    assert vault.has(7) is True
    assert vault.get(8) is None


def test_save_overwrites_existing_entry(vault):
    vault.save(3, Move.FIRE, "first", commit(Move.FIRE, "first"))
    vault.save(3, Move.WATER, "second", commit(Move.WATER, "second"))
    stored = vault.get(3)
    assert stored.move is Move.WATER
    assert stored.secret == "second"
    assert len(vault.list_all()) == 1


def test_remove_is_idempotent(vault):
    vault.save(1, Move.PLANT, "x", commit(Move.PLANT, "x"))
    assert vault.remove(1) is True
    assert vault.remove(1) is False
    assert vault.get(1) is None


def test_purge_expired_removes_only_old_entries(vault, clock):
    vault.save(1, Move.FIRE, "old", commit(Move.FIRE, "old"))
    clock.advance(SECRET_TTL_SEC - 60)
    vault.save(2, Move.WATER, "new", commit(Move.WATER, "new"))
    clock.advance(120)
    assert vault.purge_expired() == 1
    assert [s.game_id for s in vault.list_all()] == [2]
    # Second purge with nothing expired is a no-op
    assert vault.purge_expired() == 0


def test_entries_persist_across_instances(tmp_path, clock):
    path = tmp_path / "persist.db"
    first = SecretVault(path, clock=clock)
    first.save(11, Move.WATER, "keep", commit(Move.WATER, "keep"))
    first.close()
    second = SecretVault(path, clock=clock)
    try:
        assert second.get(11).secret == "keep"
    finally:
        second.close()


def test_list_all_sorted_by_game_id(vault):
    for gid in (5, 2, 9):
        vault.save(gid, Move.FIRE, f"s{gid}", commit(Move.FIRE, f"s{gid}"))
    assert [s.game_id for s in vault.list_all()] == [2, 5, 9]


def test_entry_exactly_ttl_old_is_purged(vault, clock):
    vault.save(1, Move.FIRE, "edge", commit(Move.FIRE, "edge"))
    clock.advance(SECRET_TTL_SEC - 1)
    assert vault.purge_expired() == 0
    clock.advance(1)
    assert vault.purge_expired() == 1
    assert vault.get(1) is None


def test_pending_secret_promoted_under_game_id(vault):
    digest = commit(Move.PLANT, "sprout")
    vault.save_pending(digest, Move.PLANT, "sprout")
    vault.save_pending(digest, Move.PLANT, "sprout", tx_hash="0xfeed")
    [pending] = vault.list_pending()
    assert pending.tx_hash == "0xfeed"
    assert pending.commitment_hash == digest

    stored = vault.promote(digest, 9)
    assert stored.game_id == 9 and stored.secret == "sprout"
    assert vault.get(9).commitment_hash == digest
    assert vault.list_pending() == []
    assert vault.promote(digest, 9) is None


def test_discard_and_purge_pending(vault, clock):
    first = commit(Move.FIRE, "a")
    second = commit(Move.WATER, "b")
    vault.save_pending(first, Move.FIRE, "a")
    assert vault.discard_pending(first) is True
    assert vault.discard_pending(first) is False
    vault.save_pending(second, Move.WATER, "b")
    clock.advance(SECRET_TTL_SEC)
    assert vault.purge_expired() == 1
    assert vault.list_pending() == []
