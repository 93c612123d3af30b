"""Webhook delivery service: durable queue, signed HTTP delivery, retention."""

__version__ = "0.1.0"
