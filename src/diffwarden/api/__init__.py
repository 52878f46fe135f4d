"""HTTP service: GitHub webhook, review queue and server."""

from .queue import ReviewQueue
from .webhook import router, ticket_for, verify_signature

__all__ = ["ReviewQueue", "router", "ticket_for", "verify_signature"]
