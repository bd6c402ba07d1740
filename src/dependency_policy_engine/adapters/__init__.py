"""Adapters — concrete implementations of the core protocols.

Contains:
- repositories.py — in-memory policy, violation and evaluation-history stores
- publishers.py   — in-memory and structured-log event publishers
"""

__all__: list[str] = []
