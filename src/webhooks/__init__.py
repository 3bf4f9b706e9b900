"""
Webhooks Module
===============

Bounded Context for outbound webhook delivery.

Responsibilities:
- Resolve tenant subscriptions for an event and fan out deliveries
- Sign payloads with HMAC-SHA256
- Retry failed deliveries with exponential backoff on a durable queue
- Keep per-attempt delivery history and subscription counters
- Send one-shot test deliveries
"""

__version__ = "1.0.0"
