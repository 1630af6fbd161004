from __future__ import annotations

from typing import Any, Final, Sequence

from starknet_py.hash.selector import get_selector_from_name

from tag_ledger.app.application.services.apply_chain_event import DEPOSIT_RECEIVED, WITHDRAWAL_COMPLETED
from tag_ledger.app.infrastructure.chains.starknet_adapter import normalize_felt_address


# Field layout of each event's data array. u256 values take two felts (low, high).
_LAYOUTS: Final[dict[str, tuple[str, ...]]] = {
    DEPOSIT_RECEIVED: ("sender", "recipient", "amount.low", "amount.high", "token"),
    WITHDRAWAL_COMPLETED: ("sender", "amount.low", "amount.high", "token"),
}


def u256_from_felts(low: int, high: int) -> int:
    return int(low) + (int(high) << 128)


class TagWalletEventDecoder:
    """Decodes one Starknet tag-wallet event by its selector and fixed data layout."""

    def __init__(self, event_name: str) -> None:
        if event_name not in _LAYOUTS:
            raise ValueError(f"Unsupported Starknet event: {event_name!r}")
        self.event_name = event_name
        self.selector = get_selector_from_name(event_name)
        self._layout = _LAYOUTS[event_name]

    def decode(
        self,
        *,
        keys: Sequence[bytes | int],
        data: Sequence[bytes | int] | bytes,
    ) -> dict[str, Any] | None:
        if not keys or self._as_int(keys[0]) != self.selector:
            return None
        if isinstance(data, (bytes, bytearray)) or len(data) < len(self._layout):
            return None

        fields = dict(zip(self._layout, (self._as_int(v) for v in data)))
        out: dict[str, Any] = {
            "sender": normalize_felt_address(fields["sender"]),
            "amount": u256_from_felts(fields["amount.low"], fields["amount.high"]),
            "token": normalize_felt_address(fields["token"]),
        }
        if "recipient" in fields:
            out["recipient"] = normalize_felt_address(fields["recipient"])
        return out

    @staticmethod
    def _as_int(value: bytes | int) -> int:
        if isinstance(value, int):
            return value
        return int.from_bytes(bytes(value), byteorder="big")


def default_decoders() -> list[TagWalletEventDecoder]:
    return [TagWalletEventDecoder(DEPOSIT_RECEIVED), TagWalletEventDecoder(WITHDRAWAL_COMPLETED)]
