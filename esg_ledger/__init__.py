"""
ESG Ledger

Tamper-evident audit log and multi-level approval workflow for ESG data.
"""

__version__ = "0.1.0"
