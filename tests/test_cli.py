"""CLI parsing and command dispatch against the in-memory chain."""

from __future__ import annotations

import pytest

from conftest import ALICE, CAROL, run
from elements_duel.cli import _dispatch, _run_vault_command, build_parser
from elements_duel.core.exceptions import GameIdUnresolvedError, UnknownProviderError
from elements_duel.game.commitment import commit
from elements_duel.game.engine import GameEngine
from elements_duel.game.models import Move


def test_parser_commands():
    parser = build_parser()
    args = parser.parse_args(["create", "0.1", "fire", "--secret", "s3"])
    assert (args.command, args.bet, args.move, args.secret, args.referrer) == ("create", "0.1", "fire", "s3", None)
    args = parser.parse_args(["games", "--sort", "highest-bet", "--filter", "my-games"])
    assert (args.sort, args.filter) == ("highest-bet", "my-games")
    args = parser.parse_args(["reveal", "7"])
    assert args.game_id == 7 and args.move is None and args.secret is None
    with pytest.raises(SystemExit):
        parser.parse_args(["games", "--sort", "random"])
    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_vault_commands(vault, capsys):
    parser = build_parser()
    assert _run_vault_command(parser.parse_args(["secrets"]), vault) == 0
    assert "No stored secrets." in capsys.readouterr().out
    vault.save(3, Move.WATER, "s", commit(Move.WATER, "s"))
    _run_vault_command(parser.parse_args(["secrets"]), vault)
    out = capsys.readouterr().out
    assert "#3" in out and "WATER" in out
    _run_vault_command(parser.parse_args(["purge-secrets"]), vault)
    assert "Removed 0 expired secret(s)." in capsys.readouterr().out


def test_create_then_list(manager, vault, settings, chain, capsys):
    engine = GameEngine(manager, vault, settings=settings, clock=chain.clock)
    parser = build_parser()
    chain.add_game(CAROL)

    async def scenario():
        await manager.connect()
        await _dispatch(parser.parse_args(["create", "0.5", "plant", "--secret", "leafy"]), manager, engine)
        await _dispatch(parser.parse_args(["games", "--filter", "my-games"]), manager, engine)

    run(scenario())
    out = capsys.readouterr().out
    assert "Game #2 created" in out
    assert "Secret stored locally for auto reveal: leafy" in out
    assert "#2" in out and "auto-reveal" in out and "cancel" in out
    assert "#1 " not in out
    assert vault.get(2).secret == "leafy"


def test_create_prints_secret_when_game_id_unresolved(
    manager, vault, settings, chain, ledgers, capsys, monkeypatch
):
    engine = GameEngine(manager, vault, settings=settings, clock=chain.clock)
    parser = build_parser()
    chain.emit_created_log = False

    async def unavailable():
        raise UnknownProviderError("node unavailable")

    async def scenario():
        await manager.connect()
        monkeypatch.setattr(ledgers[ALICE], "game_counter", unavailable)
        await _dispatch(parser.parse_args(["create", "0.5", "water", "--secret", "tide"]), manager, engine)

    with pytest.raises(GameIdUnresolvedError):
        run(scenario())
    assert "keep this secret: tide" in capsys.readouterr().out
    _run_vault_command(parser.parse_args(["secrets"]), vault)
    assert "pending move=WATER" in capsys.readouterr().out
