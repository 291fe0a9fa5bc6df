"""
Jupiter quote and swap client

Provides full-balance sell routes (token -> SOL) and unsigned swap
transactions for them. A missing route is a normal answer while the
token is still on its bonding curve.
"""

import base64
from typing import Any, Dict, Optional

import aiohttp
from solders.transaction import VersionedTransaction

from rapidsell.clients.http import request_json
from rapidsell.core.config import JupiterConfig
from rapidsell.core.logger import get_logger, short_address
from rapidsell.core.metrics import get_metrics, LatencyTimer
from rapidsell.core.models import Route


logger = get_logger(__name__)
metrics = get_metrics()


WSOL_MINT = "So11111111111111111111111111111111111111112"


def parse_quote(mint: str, data: Optional[Dict[str, Any]]) -> Optional[Route]:
    """
    Turn a quote response into a Route

    Returns:
        Route, or None when the aggregator has no route yet
    """
    if not data or data.get("error") or not data.get("outAmount"):
        return None

    return Route(
        mint=mint,
        in_amount=int(data.get("inAmount", 0)),
        out_amount=int(data["outAmount"]),
        raw=data
    )


class JupiterClient:
    """
    Thin async client for the Jupiter swap API

    Usage:
        jupiter = JupiterClient(JupiterConfig())
        route = await jupiter.get_route(mint, raw_amount)
        tx = await jupiter.build_swap_transaction(route, owner, fee_lamports)
        await jupiter.close()
    """

    def __init__(self, config: Optional[JupiterConfig] = None):
        self.config = config or JupiterConfig()
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"}
            )
        return self.session

    async def get_route(self, mint: str, raw_amount: int) -> Optional[Route]:
        """
        Quote selling raw_amount of mint for SOL

        Args:
            mint: Token mint address
            raw_amount: Amount in base units

        Returns:
            Route or None if not tradable yet
        """
        session = await self._get_session()
        params = {
            "inputMint": mint,
            "outputMint": WSOL_MINT,
            "amount": str(raw_amount),
            "slippageBps": str(self.config.slippage_bps),
        }

        with LatencyTimer(metrics, "jupiter_quote"):
            data = await request_json(
                session,
                "GET",
                self.config.quote_url,
                self.config.timeout_s,
                allow_error_body=True,
                params=params
            )

        route = parse_quote(mint, data)
        if route is None:
            metrics.increment_counter("jupiter_no_route")
            logger.debug(
                "jupiter_no_route",
                mint=short_address(mint),
                error=data.get("error") if isinstance(data, dict) else None
            )
        return route

    async def build_swap_transaction(
        self,
        route: Route,
        owner: str,
        priority_fee_lamports: int
    ) -> VersionedTransaction:
        """
        Ask Jupiter to build the swap transaction for a route

        Args:
            route: Route returned by get_route
            owner: Wallet address that will sign
            priority_fee_lamports: Prioritization fee to attach

        Returns:
            Unsigned VersionedTransaction

        Raises:
            ValueError: If the response carries no transaction
        """
        session = await self._get_session()
        body = {
            "quoteResponse": route.raw,
            "userPublicKey": owner,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": priority_fee_lamports,
        }

        with LatencyTimer(metrics, "jupiter_swap_build"):
            data = await request_json(
                session,
                "POST",
                self.config.swap_url,
                self.config.timeout_s,
                json=body
            )

        swap_tx = data.get("swapTransaction") if isinstance(data, dict) else None
        if not swap_tx:
            raise ValueError(f"Jupiter swap response had no transaction: {data}")

        return VersionedTransaction.from_bytes(base64.b64decode(swap_tx))

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
