"""
Duel contract ABI and call / event codecs.

Only the functions and events the client uses are listed. Encoding and decoding
go through eth-abi; selectors and topics are keccak hashes of the canonical
signatures.
"""

from __future__ import annotations

from typing import Any

from eth_abi import decode, encode
from web3 import Web3


def _p(type_: str, name: str = "", **extra: Any) -> dict[str, Any]:
    return {"internalType": type_, "name": name, "type": type_, **extra}


_GAME_TUPLE = {
    "internalType": "struct ElementsDuel.Game",
    "name": "",
    "type": "tuple",
    "components": [
        _p("address", "creator"),
        _p("bytes32", "creatorMoveHash"),
        _p("uint8", "creatorMove"),
        _p("address", "opponent"),
        _p("uint8", "opponentMove"),
        _p("uint256", "betAmount"),
        _p("uint8", "status"),
        _p("address", "winner"),
        _p("uint256", "createdAt"),
        _p("uint256", "revealDeadline"),
        _p("address", "referrer"),
    ],
}

_PLAYER_STATS_TUPLE = {
    "internalType": "struct ElementsDuel.PlayerStats",
    "name": "",
    "type": "tuple",
    "components": [
        _p("uint256", "wins"),
        _p("uint256", "losses"),
        _p("uint256", "ties"),
        _p("uint256", "gamesPlayed"),
        _p("uint256", "totalWagered"),
        _p("uint256", "totalWon"),
        _p("uint256", "referralEarnings"),
        _p("uint256", "lastPlayed"),
        _p("uint256", "monthlyScore"),
    ],
}

DUEL_ABI: list[dict[str, Any]] = [
    {"type": "function", "name": "getGame", "stateMutability": "view",
     "inputs": [_p("uint256", "_gameId")], "outputs": [_GAME_TUPLE]},
    {"type": "function", "name": "getPlayerStats", "stateMutability": "view",
     "inputs": [_p("address", "_player")], "outputs": [_PLAYER_STATS_TUPLE]},
    {"type": "function", "name": "gameCounter", "stateMutability": "view",
     "inputs": [], "outputs": [_p("uint256")]},
    {"type": "function", "name": "owner", "stateMutability": "view",
     "inputs": [], "outputs": [_p("address")]},
    {"type": "function", "name": "getTopMonthlyPlayers", "stateMutability": "view",
     "inputs": [], "outputs": [_p("address[]"), _p("uint256[]")]},
    {"type": "function", "name": "getRewardPoolInfo", "stateMutability": "view",
     "inputs": [], "outputs": [_p("uint256")]},
    {"type": "function", "name": "totalGames", "stateMutability": "view",
     "inputs": [], "outputs": [_p("uint256")]},
    {"type": "function", "name": "totalPlayers", "stateMutability": "view",
     "inputs": [], "outputs": [_p("uint256")]},
    {"type": "function", "name": "feePercentage", "stateMutability": "view",
     "inputs": [], "outputs": [_p("uint256")]},
    {"type": "function", "name": "createGame", "stateMutability": "payable",
     "inputs": [_p("bytes32", "_moveHash"), _p("address", "_referrer")], "outputs": []},
    {"type": "function", "name": "joinGame", "stateMutability": "payable",
     "inputs": [_p("uint256", "_gameId"), _p("uint8", "_move")], "outputs": []},
    {"type": "function", "name": "revealMove", "stateMutability": "nonpayable",
     "inputs": [_p("uint256", "_gameId"), _p("uint8", "_move"), _p("string", "_secret")],
     "outputs": []},
    {"type": "function", "name": "cancelGame", "stateMutability": "nonpayable",
     "inputs": [_p("uint256", "_gameId")], "outputs": []},
    {"type": "function", "name": "claimTimeout", "stateMutability": "nonpayable",
     "inputs": [_p("uint256", "_gameId")], "outputs": []},
    {"type": "event", "name": "GameCreated", "anonymous": False,
     "inputs": [
         _p("uint256", "gameId", indexed=True),
         _p("address", "creator", indexed=True),
         _p("uint256", "betAmount", indexed=False),
         _p("bytes32", "moveHash", indexed=False),
         _p("address", "referrer", indexed=False),
     ]},
    {"type": "event", "name": "GameJoined", "anonymous": False,
     "inputs": [
         _p("uint256", "gameId", indexed=True),
         _p("address", "opponent", indexed=True),
         _p("uint8", "move", indexed=False),
     ]},
    {"type": "event", "name": "GameCompleted", "anonymous": False,
     "inputs": [
         _p("uint256", "gameId", indexed=True),
         _p("address", "winner", indexed=True),
     ]},
    {"type": "event", "name": "GameCanceled", "anonymous": False,
     "inputs": [
         _p("uint256", "gameId", indexed=True),
         _p("address", "creator", indexed=True),
     ]},
]


def abi_type(param: dict[str, Any]) -> str:
    """Canonical type string; tuples expand to (t1,t2,...)."""
    if param["type"].startswith("tuple"):
        inner = ",".join(abi_type(c) for c in param["components"])
        return f"({inner}){param['type'][len('tuple'):]}"
    return param["type"]


_FUNCTIONS = {e["name"]: e for e in DUEL_ABI if e["type"] == "function"}
_EVENTS = {e["name"]: e for e in DUEL_ABI if e["type"] == "event"}


def _signature(entry: dict[str, Any]) -> str:
    return f"{entry['name']}({','.join(abi_type(p) for p in entry['inputs'])})"


def function_entry(name: str) -> dict[str, Any]:
    try:
        return _FUNCTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown contract function: {name}") from None


def function_selector(name: str) -> bytes:
    return bytes(Web3.keccak(text=_signature(function_entry(name)))[:4])


def encode_call(name: str, args: list[Any]) -> str:
    """0x-prefixed calldata for eth_call / eth_sendTransaction."""
    entry = function_entry(name)
    types = [abi_type(p) for p in entry["inputs"]]
    if len(types) != len(args):
        raise ValueError(f"{name} expects {len(types)} arguments, got {len(args)}")
    return Web3.to_hex(function_selector(name) + encode(types, args))


def decode_output(name: str, data: bytes) -> tuple[Any, ...]:
    entry = function_entry(name)
    return decode([abi_type(p) for p in entry["outputs"]], data)


EVENT_TOPICS: dict[str, str] = {
    name: Web3.to_hex(Web3.keccak(text=_signature(entry))) for name, entry in _EVENTS.items()
}
TOPIC_TO_EVENT: dict[str, str] = {topic: name for name, topic in EVENT_TOPICS.items()}


def decode_event_log(log: dict[str, Any]) -> tuple[str, dict[str, Any]] | None:
    """
    Decode a raw eth_getLogs entry for a known event. Returns (event_name, args)
    or None when topic0 is not one of ours. Address args are checksummed.
    """
    topics = [t if isinstance(t, str) else Web3.to_hex(t) for t in log.get("topics") or []]
    if not topics:
        return None
    name = TOPIC_TO_EVENT.get(topics[0].lower())
    if name is None:
        return None
    entry = _EVENTS[name]
    indexed = [p for p in entry["inputs"] if p.get("indexed")]
    plain = [p for p in entry["inputs"] if not p.get("indexed")]
    args: dict[str, Any] = {}
    for param, topic in zip(indexed, topics[1:]):
        (args[param["name"]],) = decode([abi_type(param)], Web3.to_bytes(hexstr=topic))
    if plain:
        data = log.get("data") or "0x"
        raw = Web3.to_bytes(hexstr=data) if isinstance(data, str) else bytes(data)
        values = decode([abi_type(p) for p in plain], raw)
        args.update({p["name"]: v for p, v in zip(plain, values)})
    for param in entry["inputs"]:
        key = param["name"]
        if param["type"] == "address" and key in args:
            args[key] = Web3.to_checksum_address(args[key])
    return name, args
