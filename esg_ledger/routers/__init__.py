"""
ESG Ledger - API Routers
"""

from esg_ledger.routers import audit_trail, notifications, workflows

__all__ = ["audit_trail", "notifications", "workflows"]
