"""
Load sell wallets from a JSON key file

The file holds a list of entries:

    [
        {"secret_key": "<base58>", "role": "creator"},
        {"secret_key": [12, 34, ...], "role": "bundle", "buy_amount_sol": 0.5},
        {"secret_key": "<base58>", "role": "holder", "eligible": false}
    ]
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

import base58
from solders.keypair import Keypair

from rapidsell.core.models import Wallet, WalletRole


def parse_secret_key(value: Union[str, List[int]]) -> Keypair:
    """
    Build a Keypair from a base58 string or a byte array

    Raises:
        ValueError: If the key can't be decoded
    """
    try:
        if isinstance(value, list):
            return Keypair.from_bytes(bytes(value))

        text = value.strip()
        if text.startswith("["):
            # Array format [1,2,3,...]
            return Keypair.from_bytes(bytes(int(x.strip()) for x in text.strip("[]").split(",")))
        return Keypair.from_bytes(base58.b58decode(text))
    except Exception as e:
        raise ValueError(f"Invalid secret key: {e}") from e


def wallet_from_entry(entry: Dict[str, Any]) -> Wallet:
    if "secret_key" not in entry:
        raise ValueError("Key entry is missing 'secret_key'")

    buy_amount = entry.get("buy_amount_sol")
    return Wallet(
        keypair=parse_secret_key(entry["secret_key"]),
        role=WalletRole.parse(entry.get("role", "bundle")),
        eligible=bool(entry.get("eligible", True)),
        buy_amount_sol=float(buy_amount) if buy_amount is not None else None
    )


def load_wallets(path: Union[str, Path]) -> List[Wallet]:
    """
    Read every wallet listed in a key file

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file isn't a list of valid entries
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Key file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError(f"Key file must contain a JSON list, got {type(data).__name__}")

    return [wallet_from_entry(entry) for entry in data]
