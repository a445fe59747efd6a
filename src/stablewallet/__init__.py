"""Custodial key management and deposit settlement for a stablecoin wallet."""

__version__ = "0.1.0"
