"""Core domain logic for permitflow."""
