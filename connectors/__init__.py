"""
connectors — OAuth connections to advertising platforms.

Provides the connect flow and credential lifecycle:
  • platform registry (endpoints, client ids, scopes, enabled flag)
  • signed, single-use CSRF state per (user, platform)
  • authorization-URL construction
  • callback handling (code → token → ad account → limit → store)
  • per-user credential storage with Fernet encryption at rest
  • soft disconnect / reconnect

Each platform (Google Ads, LinkedIn Ads, …) is a subclass of BaseConnector.
"""
