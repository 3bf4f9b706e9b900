"""
Escalation Module
=================

Bounded Context for rule-driven ticket escalation.

Responsibilities:
- Load escalation rules (database or hot-reloaded YAML)
- Select candidate tickets and evaluate rule conditions
- Suppress repeat firings within the dedup window
- Execute escalation actions (reassign, reprioritize, change status,
  webhook, email, SMS) with per-action failure isolation
- Record an audit event per firing
"""

__version__ = "1.0.0"
