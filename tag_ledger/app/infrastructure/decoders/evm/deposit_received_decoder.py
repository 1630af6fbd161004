from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Sequence

from eth_abi import decode as abi_decode
from eth_utils import keccak

from tag_ledger.app.infrastructure.chains.abi import TAG_WALLET_ABI_PATH, load_abi


class DepositReceivedDecoder:
    """
    ABI-based decoder for the TagWallet DepositReceived event.

    It:
    - loads the ABI and finds the event by name,
    - computes topic0 = keccak("DepositReceived(string,address,uint256)"),
    - reads the indexed args from topics (the tag only as its keccak hash,
      since indexed strings are hashed),
    - decodes the non-indexed amount from `data` with eth_abi.
    """

    def __init__(self, *, abi_path: Path = TAG_WALLET_ABI_PATH, event_name: str = "DepositReceived") -> None:
        self._event_abi = self._find_event(load_abi(abi_path), event_name)
        self._signature = self._event_signature(self._event_abi)
        self._topic0 = keccak(text=self._signature)

        inputs: list[dict[str, Any]] = list(self._event_abi.get("inputs", []))
        self._non_indexed_types = [i["type"] for i in inputs if not i.get("indexed")]
        self._non_indexed_names = [i["name"] for i in inputs if not i.get("indexed")]

    @property
    def topic0(self) -> bytes:
        return self._topic0

    @property
    def event_signature(self) -> str:
        return self._signature

    def decode(
        self,
        *,
        keys: Sequence[bytes | int],
        data: Sequence[bytes | int] | bytes,
    ) -> dict[str, Any] | None:
        topics = [self._as_bytes32(k) for k in keys]
        if not topics or topics[0] != self._topic0:
            return None
        # topic1: keccak(tag), topic2: from
        if len(topics) < 3:
            return None

        raw = bytes(data) if isinstance(data, (bytes, bytearray, memoryview)) else b""
        values = dict(zip(self._non_indexed_names, abi_decode(self._non_indexed_types, raw), strict=True))
        amount = values.get("amount")
        if not isinstance(amount, int):
            return None

        return {
            "tag_hash": topics[1],
            "sender": "0x" + topics[2][-20:].hex(),
            "amount": amount,
        }

    @staticmethod
    def tag_hash(tag: str) -> bytes:
        return keccak(text=tag)

    # ---------------------------------------------------------------------
    # ABI helpers
    # ---------------------------------------------------------------------

    def _find_event(self, abi: list[dict[str, Any]], event_name: str) -> dict[str, Any]:
        events = [x for x in abi if x.get("type") == "event" and x.get("name") == event_name]
        if not events:
            names = sorted({x.get("name") for x in abi if x.get("type") == "event"})
            raise ValueError(f"Event {event_name!r} not found in ABI. Available events: {names}")
        if len(events) > 1:
            raise ValueError(
                f"Multiple events named {event_name!r} found in ABI. "
                "Disambiguation by full signature is required."
            )
        return events[0]

    def _event_signature(self, event_abi: Mapping[str, Any]) -> str:
        name = event_abi.get("name")
        inputs = event_abi.get("inputs", [])
        if not isinstance(name, str) or not isinstance(inputs, list):
            raise ValueError("Invalid event ABI: missing name/inputs")
        return f"{name}({','.join(inp['type'] for inp in inputs)})"

    def _as_bytes32(self, value: bytes | int) -> bytes:
        if isinstance(value, int):
            return value.to_bytes(32, byteorder="big")
        b = bytes(value)
        if len(b) != 32:
            raise ValueError(f"Expected 32 bytes (bytes32 topic), got len={len(b)}")
        return b
