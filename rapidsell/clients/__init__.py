"""Provider adapters (Solana RPC, Jupiter)"""
