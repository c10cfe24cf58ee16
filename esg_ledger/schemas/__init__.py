"""
ESG Ledger - Pydantic Schemas
"""
