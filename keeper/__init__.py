"""Secret Keeper: a dead-man's-switch document escrow service."""

__version__ = "0.1.0"
