"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Background job scheduling
"""
