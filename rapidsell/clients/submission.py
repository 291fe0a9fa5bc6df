"""
Submission channel backed by Jupiter (swap building) and Solana RPC (broadcast, status)
"""

from typing import Optional

from solders.transaction import VersionedTransaction

from rapidsell.clients.jupiter_client import JupiterClient
from rapidsell.clients.solana_rpc import SolanaRpcClient
from rapidsell.core.interfaces import TxStatus
from rapidsell.core.logger import get_logger, short_address
from rapidsell.core.models import Route, Wallet
from rapidsell.core.priority_fees import PriorityFeeSchedule


logger = get_logger(__name__)


class SwapSubmissionChannel:
    """
    Signs Jupiter swap transactions with the wallet's keypair and sends them over RPC

    Each sign() asks for a fresh swap transaction (and so a fresh
    blockhash) with the next priority fee from the schedule.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        jupiter: JupiterClient,
        fee_schedule: Optional[PriorityFeeSchedule] = None
    ):
        self.rpc = rpc
        self.jupiter = jupiter
        self.fee_schedule = fee_schedule or PriorityFeeSchedule()

    async def sign(self, route: Route, wallet: Wallet) -> VersionedTransaction:
        fee = self.fee_schedule.next_fee()
        unsigned = await self.jupiter.build_swap_transaction(route, wallet.address, fee)
        signed = VersionedTransaction(unsigned.message, [wallet.keypair])
        logger.debug(
            "swap_transaction_signed",
            wallet=short_address(wallet.address),
            priority_fee_lamports=fee
        )
        return signed

    async def submit(self, signed_tx: VersionedTransaction) -> str:
        return await self.rpc.send_transaction(signed_tx)

    async def get_status(self, signature: str) -> Optional[TxStatus]:
        return await self.rpc.get_signature_status(signature)
