"""FOMO Relay - trade alert relay with contract address resolution."""

__version__ = "0.1.0"
