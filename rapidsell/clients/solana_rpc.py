"""
Solana JSON-RPC client for token accounts, submission and signature status
"""

import base64
from typing import Any, Dict, List, Optional

import aiohttp
from solders.transaction import VersionedTransaction

from rapidsell.clients.http import request_json
from rapidsell.core.config import RPCConfig
from rapidsell.core.errors import RateLimitedError
from rapidsell.core.interfaces import TxStatus, TxStatusKind
from rapidsell.core.logger import get_logger, short_address
from rapidsell.core.metrics import get_metrics, LatencyTimer
from rapidsell.core.models import TokenAccountRef


logger = get_logger(__name__)
metrics = get_metrics()


class RpcError(Exception):
    """JSON-RPC error object returned by the node"""

    def __init__(self, method: str, code: Optional[int], message: str):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed ({code}): {message}")


def parse_token_account(value: List[Dict[str, Any]], owner: str, mint: str) -> Optional[TokenAccountRef]:
    """
    Pick the token account for mint out of a getTokenAccountsByOwner result

    Returns:
        TokenAccountRef or None if the owner has none yet
    """
    for entry in value or []:
        account = entry.get("account", {})
        parsed = account.get("data", {}).get("parsed", {}) if isinstance(account.get("data"), dict) else {}
        info = parsed.get("info", {})
        if info.get("mint", mint) != mint:
            continue
        return TokenAccountRef(
            address=entry["pubkey"],
            mint=mint,
            owner=owner,
            program_id=account.get("owner")
        )
    return None


def parse_signature_status(value: Optional[Dict[str, Any]]) -> Optional[TxStatus]:
    """Map one getSignatureStatuses entry to a TxStatus (None = not seen yet)"""
    if value is None:
        return None

    slot = value.get("slot")
    if value.get("err") is not None:
        return TxStatus(kind=TxStatusKind.ONCHAIN_ERROR, slot=slot, error=str(value["err"]))

    confirmation = value.get("confirmationStatus")
    if confirmation == "finalized":
        return TxStatus(kind=TxStatusKind.FINALIZED, slot=slot)
    if confirmation == "confirmed":
        return TxStatus(kind=TxStatusKind.CONFIRMED, slot=slot)
    return TxStatus(kind=TxStatusKind.PENDING, slot=slot)


class SolanaRpcClient:
    """
    Minimal async JSON-RPC client

    Features:
    - Token account lookup by owner and mint
    - Raw token balance reads
    - Fire-and-forget submission (skipPreflight, maxRetries=0)
    - Signature status lookup

    HTTP 429 and JSON-RPC error code 429 raise RateLimitedError;
    connection failures raise NetworkError.
    """

    def __init__(self, config: RPCConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"}
            )
        return self.session

    async def _call(self, method: str, params: List[Any]) -> Any:
        """Send a JSON-RPC request and return its result field"""
        session = await self._get_session()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        with LatencyTimer(metrics, "rpc_call", labels={"method": method}):
            data = await request_json(
                session,
                "POST",
                self.config.url,
                self.config.timeout_s,
                json=payload
            )

        if "error" in data:
            error = data["error"] or {}
            code = error.get("code")
            message = error.get("message", str(error))
            if code == 429:
                raise RateLimitedError(f"{method}: {message}")
            raise RpcError(method, code, message)

        return data.get("result")

    async def find_token_account(self, owner: str, mint: str) -> Optional[TokenAccountRef]:
        result = await self._call(
            "getTokenAccountsByOwner",
            [
                owner,
                {"mint": mint},
                {"encoding": "jsonParsed", "commitment": self.config.commitment},
            ]
        )
        return parse_token_account((result or {}).get("value"), owner, mint)

    async def get_balance(self, account: TokenAccountRef) -> int:
        result = await self._call(
            "getTokenAccountBalance",
            [account.address, {"commitment": self.config.commitment}]
        )
        value = (result or {}).get("value") or {}
        return int(value.get("amount", 0))

    async def send_transaction(self, tx: VersionedTransaction) -> str:
        """
        Broadcast a signed transaction without preflight or node retries

        Returns:
            Transaction signature
        """
        encoded = base64.b64encode(bytes(tx)).decode("utf-8")
        signature = await self._call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": True,
                    "maxRetries": 0,
                    "preflightCommitment": "processed",
                },
            ]
        )
        logger.debug("transaction_sent", signature=short_address(signature or ""))
        return signature

    async def get_signature_status(self, signature: str) -> Optional[TxStatus]:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}]
        )
        values = (result or {}).get("value") or [None]
        return parse_signature_status(values[0])

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
