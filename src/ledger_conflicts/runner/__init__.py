"""
CLI runner module.

Provides commands:
- detect: List potential duplicates (JSON file or ledger)
- resolve: Resolve one conflict
- resolve-all: Resolve every open conflict
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
