"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files (see env.py).
- Validate required settings and provide defaults for optional ones.
- Expose typed settings (wallet RPC URL, contract address, accepted chain ids,
  vault path, timers) for use by the manager, engine, CLI and main entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from elements_duel.config import env

MIN_INTERVAL_SEC = 1.0


@dataclass(frozen=True)
class Settings:
    """Resolved client settings. Build with get_settings() or explicitly in tests."""

    wallet_rpc_url: str = field(default_factory=env.get_wallet_rpc_url)
    contract_address: str = field(default_factory=env.get_contract_address)
    target_chain_id: int = field(default_factory=env.get_target_chain_id)
    expected_chain_ids: tuple[int, ...] = field(default_factory=env.get_expected_chain_ids)
    vault_db_path: Path = field(default_factory=env.get_vault_db_path)
    refresh_interval_sec: float = field(default_factory=env.get_refresh_interval_sec)
    balance_refresh_sec: float = field(default_factory=env.get_balance_refresh_sec)
    event_poll_sec: float = field(default_factory=env.get_event_poll_sec)
    rpc_timeout_sec: float = field(default_factory=env.get_rpc_timeout_sec)

    def __post_init__(self) -> None:
        if not self.wallet_rpc_url.strip():
            raise ValueError("wallet_rpc_url must be non-empty")
        if not self.contract_address.strip():
            raise ValueError("contract_address must be non-empty")
        if self.target_chain_id not in self.expected_chain_ids:
            raise ValueError("target_chain_id must be one of expected_chain_ids")
        for name in ("refresh_interval_sec", "balance_refresh_sec", "event_poll_sec", "rpc_timeout_sec"):
            if getattr(self, name) < MIN_INTERVAL_SEC:
                raise ValueError(f"{name} must be at least {MIN_INTERVAL_SEC} seconds")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the current application settings (cached for the process).

    Returns:
        Settings with wallet_rpc_url, contract_address, expected_chain_ids,
        vault_db_path and timer intervals resolved from the environment.
    """
    return Settings()
