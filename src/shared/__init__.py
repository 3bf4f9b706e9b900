"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (Escalation and Webhooks).

Architecture Pattern: Modular Monolith
- Each module (escalation, webhooks) is a bounded context
- Shared kernel contains only generic infrastructure
- Domain models are extended within each module

DO NOT add escalation or webhook business logic to the shared kernel.
"""

__version__ = "1.0.0"
