"""
Domain package - Core ledger rules with no external dependencies.

This package contains the pure Python models, the allocation state machine,
the access policy table and money handling for the donation ledger.
"""
