"""
Error taxonomy for sell tasks

Adapters raise the typed exceptions below where they can tell what went
wrong; everything else is classified from the exception type and message
text returned by providers.
"""

import asyncio
import re
from enum import Enum
from typing import Optional

import aiohttp


class ErrorClass(Enum):
    """What kind of failure an attempt hit"""
    TRANSIENT_NOT_READY = "transient_not_ready"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    ON_CHAIN_REJECTED = "on_chain_rejected"
    UNEXPECTED = "unexpected"


class RapidSellError(Exception):
    """Base class for engine errors"""
    error_class = ErrorClass.UNEXPECTED


class TransientNotReady(RapidSellError):
    """Account, balance or route not available yet"""
    error_class = ErrorClass.TRANSIENT_NOT_READY


class RateLimitedError(RapidSellError):
    """Provider answered with a rate-limit signal (HTTP 429)"""
    error_class = ErrorClass.RATE_LIMITED

    def __init__(self, message: str = "429 Too Many Requests", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NetworkError(RapidSellError):
    """Connection, DNS or transport failure"""
    error_class = ErrorClass.NETWORK


class OnChainRejected(RapidSellError):
    """Transaction landed but the program returned an error"""
    error_class = ErrorClass.ON_CHAIN_REJECTED

    def __init__(self, signature: str, error: str):
        super().__init__(f"Transaction {signature} failed on-chain: {error}")
        self.signature = signature
        self.error = error


class RetriesExhausted(RapidSellError):
    """Retry budget spent; reported in the SellResult, never raised to callers"""

    def __init__(self, wallet_address: str, attempts: int):
        super().__init__(f"Wallet {wallet_address} gave up after {attempts} attempts")
        self.wallet_address = wallet_address
        self.attempts = attempts


# A standalone 429 only; base58 addresses and signatures can contain the digits
_RATE_LIMIT_CODE = re.compile(r"\b429\b")
_RATE_LIMIT_MARKERS = ("too many requests", "rate limit")
_NETWORK_MARKERS = (
    "fetch failed",
    "econnrefused",
    "enotfound",
    "econnreset",
    "cannot connect",
    "connection reset",
    "name or service not known",
    "temporary failure in name resolution",
)
_NOT_READY_MARKERS = ("no quote available", "no routes found", "could not find any route")


def classify_error(error: BaseException) -> ErrorClass:
    """
    Map an exception raised during an attempt to its ErrorClass

    Args:
        error: Exception caught by the task loop

    Returns:
        ErrorClass used to pick the backoff delay
    """
    if isinstance(error, RapidSellError):
        return error.error_class

    if isinstance(error, aiohttp.ClientResponseError) and error.status == 429:
        return ErrorClass.RATE_LIMITED

    if isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError, ConnectionError)):
        return ErrorClass.NETWORK

    message = str(error).lower()
    if _RATE_LIMIT_CODE.search(message) or any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return ErrorClass.RATE_LIMITED
    if any(marker in message for marker in _NETWORK_MARKERS):
        return ErrorClass.NETWORK
    if any(marker in message for marker in _NOT_READY_MARKERS):
        return ErrorClass.TRANSIENT_NOT_READY

    return ErrorClass.UNEXPECTED
