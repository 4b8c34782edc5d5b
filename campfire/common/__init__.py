"""Shared identity, error and envelope helpers."""
