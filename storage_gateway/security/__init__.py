"""Credential encryption."""
