"""Adapters — concrete implementations of podsched-core ports."""
