"""Webhook and delivery attempt persistence."""
