# API routes
from identity_sync.api.routes import health
from identity_sync.api.routes import profile
from identity_sync.api.routes import webhooks_clerk

__all__ = ["health", "profile", "webhooks_clerk"]
