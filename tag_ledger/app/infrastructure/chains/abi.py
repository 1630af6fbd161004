from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Final


ABI_DIR: Final[Path] = Path(__file__).resolve().parents[2] / "registry" / "abi"
TAG_WALLET_ABI_PATH: Final[Path] = ABI_DIR / "TagWallet.json"


def load_abi(abi_path: Path = TAG_WALLET_ABI_PATH) -> list[dict[str, Any]]:
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path}")
    data = json.loads(abi_path.read_text(encoding="utf-8"))

    # Common formats:
    # - [ ... ] (ABI list)
    # - { "abi": [ ... ] } (artifact)
    if isinstance(data, list):
        abi = data
    elif isinstance(data, dict) and isinstance(data.get("abi"), list):
        abi = data["abi"]
    else:
        raise ValueError(
            f"Unsupported ABI JSON format in {abi_path}. Expected list or dict with 'abi' list."
        )
    return [x for x in abi if isinstance(x, dict)]
