"""
Explicit address variants.

The ledger encodes "no opponent", "no winner", "no referrer" and "tie" with the
zero address. Records convert those sentinels into UNSET / TIE at the ledger
boundary so no other code compares against a magic constant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Unset:
    """Address slot not filled on the ledger."""

    def __bool__(self) -> bool:
        return False

    def __str__(self) -> str:
        return "unset"


@dataclass(frozen=True)
class Tie:
    """Completed game with no single winner."""

    def __str__(self) -> str:
        return "tie"


@dataclass(frozen=True)
class Address:
    """A checksummed EVM address."""

    value: str

    def __post_init__(self) -> None:
        if not Web3.is_address(self.value):
            raise ValueError(f"Invalid address: {self.value!r}")
        object.__setattr__(self, "value", Web3.to_checksum_address(self.value))

    def matches(self, other: str | "Address" | None) -> bool:
        """Case-insensitive comparison against a raw string or another Address."""
        if other is None:
            return False
        raw = other.value if isinstance(other, Address) else str(other)
        return raw.lower() == self.value.lower()

    def short(self) -> str:
        return f"{self.value[:6]}...{self.value[-4:]}"

    def __str__(self) -> str:
        return self.value


UNSET = Unset()
TIE = Tie()

MaybeAddress = Union[Unset, Address]
WinnerSlot = Union[Unset, Tie, Address]


def parse_optional_address(raw: str | None) -> MaybeAddress:
    """Map a raw ledger address to Address, or UNSET for empty / zero."""
    if not raw or str(raw).lower() == ZERO_ADDRESS:
        return UNSET
    return Address(str(raw))


def parse_winner(raw: str | None, *, completed: bool) -> WinnerSlot:
    """Zero winner on a completed game is a tie; otherwise it means no winner yet."""
    parsed = parse_optional_address(raw)
    if isinstance(parsed, Unset) and completed:
        return TIE
    return parsed


def to_raw(address: MaybeAddress | None) -> str:
    """Encode a variant back to the ledger form (zero address for UNSET / None)."""
    if isinstance(address, Address):
        return address.value
    return ZERO_ADDRESS


def shorten(raw: str | None) -> str:
    """Shortened address for logs."""
    if not raw:
        return "?"
    raw = str(raw)
    return raw if len(raw) <= 12 else f"{raw[:6]}...{raw[-4:]}"
