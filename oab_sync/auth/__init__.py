"""
oab_sync.auth - OAuth2 authentication
"""

from oab_sync.auth.google_auth import SCOPES, AuthenticationError, GoogleAuth

__all__ = ["SCOPES", "AuthenticationError", "GoogleAuth"]
