"""Local custody of commit-reveal secrets."""

from elements_duel.vault.secret_vault import (
    SECRET_TTL_SEC,
    GameSecretRow,
    PendingSecret,
    PendingSecretRow,
    SecretVault,
    StoredSecret,
)

__all__ = [
    "SECRET_TTL_SEC",
    "GameSecretRow",
    "PendingSecret",
    "PendingSecretRow",
    "SecretVault",
    "StoredSecret",
]
