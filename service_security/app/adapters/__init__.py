"""
Adapters for collaborators the security gateway consumes.
"""

from .auth_client import Authenticator, AuthServiceAuthenticator, Identity

__all__ = ["Authenticator", "AuthServiceAuthenticator", "Identity"]
