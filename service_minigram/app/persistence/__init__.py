"""
Store of record for MiniGram (PostgreSQL via asyncpg).
"""
