"""
DTS - Donation Tracking System.

Tracks donations from contribution through verification, allocation and
disbursement, with an append-only audit trail of every change.
"""

__version__ = "0.1.0"
