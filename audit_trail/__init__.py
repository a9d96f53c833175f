"""Append-only, organization-scoped audit log service."""
