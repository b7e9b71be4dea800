"""
Configuration management for the Elements Duel client.

Loads and validates settings from environment variables and an optional
.env file. Exposes a single source of truth for wallet, ledger and vault
configuration.
"""

from elements_duel.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
