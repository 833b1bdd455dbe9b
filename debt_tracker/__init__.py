"""Reconstructs outstanding lending balances on Base from raw chain history."""

__version__ = "0.1.0"
