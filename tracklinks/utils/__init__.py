"""Shared helpers for tracklinks services."""
