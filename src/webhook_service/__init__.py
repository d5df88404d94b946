"""Tenant-scoped webhook delivery service."""
