"""Test doubles shared across the unit tests."""
