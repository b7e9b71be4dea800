"""
Test that duel_logging can be imported without circular import and logger works.
"""

from __future__ import annotations


def test_logging_import():
    """Import get_logger from duel_logging and use the logger."""
    from elements_duel.duel_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
    # Smoke test: call info (should not raise)
    logger.info("test_message", key="value")


def test_bind_account():
    from elements_duel.duel_logging import bind_account

    logger = bind_account("0xa1a1...a1a1")
    logger.info("account_bound_message", game_id=1)


def test_full_addresses_are_shortened():
    from elements_duel.duel_logging.logger import _shorten_addresses

    full = "0x" + "Ab" * 20
    out = _shorten_addresses(None, "info", {"player": full, "tx_hash": "0x" + "cd" * 32, "account": "0xa1...a1"})
    assert out["player"] == "0xAbAb...AbAb"
    assert out["tx_hash"] == "0x" + "cd" * 32
    assert out["account"] == "0xa1...a1"
