"""
ESG Ledger - Utilities
"""
