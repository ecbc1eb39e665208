"""Shared utilities: HTTP components and secure logging."""
