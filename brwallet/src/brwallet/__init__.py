"""
brwallet - HD key derivation, wallet ledger and transaction builder
"""

__version__ = "0.1.0"
