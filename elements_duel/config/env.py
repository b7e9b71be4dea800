"""
Environment variable loading and validation for Elements Duel.

- DUEL_NETWORK: mainnet | testnet (default: mainnet)
- DUEL_WALLET_RPC_URL: wallet bridge JSON-RPC endpoint (EIP-1193 over HTTP)
- DUEL_CONTRACT_ADDRESS: deployed duel contract address
- DUEL_CHAIN_IDS: comma-separated accepted chain ids (default: 56,97)
- DUEL_VAULT_DB_PATH: SQLite file that holds commitment secrets
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

# Project root: config is elements_duel/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_CONTRACT_ADDRESS = "0x3007582C0E80Fc9e381d7A1Eb198c72B0d1C3697"
DEFAULT_WALLET_RPC_URL = "http://127.0.0.1:1248"
DEFAULT_VAULT_DB_PATH = "duel_secrets.db"

MAINNET_CHAIN_ID = 56
TESTNET_CHAIN_ID = 97

# Canonical descriptors passed to wallet_addEthereumChain when the wallet
# does not know the chain yet.
NETWORK_DESCRIPTORS: dict[int, dict[str, Any]] = {
    MAINNET_CHAIN_ID: {
        "chainId": hex(MAINNET_CHAIN_ID),
        "chainName": "Binance Smart Chain Mainnet",
        "nativeCurrency": {"name": "BNB", "symbol": "BNB", "decimals": 18},
        "rpcUrls": ["https://bsc-dataseed1.binance.org"],
        "blockExplorerUrls": ["https://bscscan.com"],
    },
    TESTNET_CHAIN_ID: {
        "chainId": hex(TESTNET_CHAIN_ID),
        "chainName": "Binance Smart Chain Testnet",
        "nativeCurrency": {"name": "tBNB", "symbol": "tBNB", "decimals": 18},
        "rpcUrls": ["https://data-seed-prebsc-1-s1.binance.org:8545"],
        "blockExplorerUrls": ["https://testnet.bscscan.com"],
    },
}


def load_duel_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def _parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def get_network() -> str:
    """
    Return DUEL_NETWORK from env: mainnet | testnet.
    Default: mainnet.
    """
    load_duel_env()
    raw = (os.getenv("DUEL_NETWORK") or "mainnet").strip().lower()
    return "testnet" if raw in ("testnet", "bsc-testnet") else "mainnet"


def get_target_chain_id() -> int:
    """Chain id the manager asks the wallet to switch to."""
    return TESTNET_CHAIN_ID if get_network() == "testnet" else MAINNET_CHAIN_ID


def get_expected_chain_ids() -> tuple[int, ...]:
    """
    Return accepted chain ids. DUEL_CHAIN_IDS overrides; the target chain
    is always included.
    """
    load_duel_env()
    raw = (os.getenv("DUEL_CHAIN_IDS") or "").strip()
    ids: list[int] = []
    if raw:
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            ids.append(int(part, 16) if part.lower().startswith("0x") else int(part))
    else:
        ids = [MAINNET_CHAIN_ID, TESTNET_CHAIN_ID]
    target = get_target_chain_id()
    if target not in ids:
        ids.insert(0, target)
    return tuple(ids)


def get_wallet_rpc_url() -> str:
    """Resolve the wallet bridge URL. Order: DUEL_WALLET_RPC_URL > local default."""
    load_duel_env()
    url = (os.getenv("DUEL_WALLET_RPC_URL") or "").strip()
    return url or DEFAULT_WALLET_RPC_URL


def get_contract_address() -> str:
    """Return DUEL_CONTRACT_ADDRESS from env, or the deployed default."""
    load_duel_env()
    return (os.getenv("DUEL_CONTRACT_ADDRESS") or "").strip() or DEFAULT_CONTRACT_ADDRESS


def get_vault_db_path() -> Path:
    """Return path to the local secret vault database."""
    load_duel_env()
    raw = (os.getenv("DUEL_VAULT_DB_PATH") or "").strip()
    return Path(raw or DEFAULT_VAULT_DB_PATH)


def get_refresh_interval_sec() -> float:
    load_duel_env()
    return _parse_float_env("DUEL_REFRESH_INTERVAL_SEC", 300.0)


def get_balance_refresh_sec() -> float:
    load_duel_env()
    return _parse_float_env("DUEL_BALANCE_REFRESH_SEC", 300.0)


def get_event_poll_sec() -> float:
    load_duel_env()
    return _parse_float_env("DUEL_EVENT_POLL_SEC", 15.0)


def get_rpc_timeout_sec() -> float:
    load_duel_env()
    return _parse_float_env("DUEL_RPC_TIMEOUT_SEC", 30.0)


def describe_network(chain_id: int) -> dict[str, Any]:
    """Return the wallet_addEthereumChain descriptor for chain_id."""
    try:
        return dict(NETWORK_DESCRIPTORS[chain_id])
    except KeyError:
        raise ValueError(f"No network descriptor for chain id {chain_id}") from None


def print_duel_startup(script_name: str) -> None:
    """Print network, contract and wallet endpoint at script start."""
    network = get_network()
    contract = get_contract_address()
    rpc = get_wallet_rpc_url()
    print(f"[elements-duel] {script_name} | network={network} | contract={contract} | wallet={rpc}")
