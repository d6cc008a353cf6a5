"""Durable storage for agency task records."""
