"""
ESG Ledger - Background Tasks
"""
