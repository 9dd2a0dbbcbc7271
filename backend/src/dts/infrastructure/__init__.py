"""
Infrastructure package - Persistence for the ledger.
"""
