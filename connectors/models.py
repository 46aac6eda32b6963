"""
This module re-exports the connection tables from the database package for use in connector-related code.
"""

from database.models import AdAccount, OAuthStateRecord, PlanEntitlement  # noqa: F401

__all__ = ["AdAccount", "OAuthStateRecord", "PlanEntitlement"]
