"""
Elements Duel: client core for a commit-reveal Fire/Water/Plant wagering game.

Keeps a resilient session to a wallet + ledger JSON-RPC endpoint, drives the
commit-reveal protocol against the ledger contract, and custodies commitment
pre-images locally between the create and reveal steps. Modular architecture
with clear separation between wallet session, ledger binding, game engine,
and secret vault.
"""

__version__ = "0.1.0"
