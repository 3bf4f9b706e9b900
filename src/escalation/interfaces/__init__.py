"""
Escalation Interfaces Layer
===========================

Interface adapters (controllers) for the escalation engine.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.escalation.interfaces.controllers import escalation_router

__all__ = ["escalation_router"]
