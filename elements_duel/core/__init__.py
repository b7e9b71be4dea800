"""
Core types shared across wallet, ledger and game packages.

Provides the error taxonomy and the explicit address variants (Unset / Tie /
Address) that replace zero-address sentinels everywhere past the ledger boundary.
"""
