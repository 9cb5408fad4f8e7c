"""Accounts: registration, login and token validation."""
