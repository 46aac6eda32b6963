"""
auth — caller identity for the connector API.

Provides:
  • signed bearer token creation & verification
  • ``get_current_user_id`` / ``get_optional_user_id`` FastAPI dependencies

User registration and login live in the identity service.
"""
