"""
Webhook Interfaces Layer
========================

Interface adapters (controllers) for webhook delivery.
"""

from src.webhooks.interfaces.controllers import webhook_router

__all__ = ["webhook_router"]
