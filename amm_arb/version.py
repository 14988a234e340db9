"""Version information for the AMM opportunity scanner."""

__version__ = "0.1.0"
