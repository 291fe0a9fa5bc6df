"""
Rapid Sell Engine

Sells one token from many wallets in parallel the moment it becomes
tradable:
- One async task per wallet, each retrying until confirmed
- Shared rate limiter sized under the RPC provider's limit
- Priority (creator) wallet launched first, optional start stagger
- Full-balance sells only, re-read before every submission
"""

__version__ = "1.0.0"
