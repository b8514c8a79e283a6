"""Persistence layer for permitflow."""
