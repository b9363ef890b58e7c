"""ethscanner — Ethereum address transaction index and block observer."""

__version__ = "0.1.0"
