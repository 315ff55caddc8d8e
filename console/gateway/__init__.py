"""
cvdb HTTP Gateway - REST access to career-history storage.

The gateway:
1. Owns a cvdb Server (registry, platform client, connection cache)
2. Resolves each request to the session's local store or the principal's
   tenant database
3. Exposes the session migration and tenant provisioning workflows
"""

from .app import create_app
from .routes import router

__all__ = ["create_app", "router"]
