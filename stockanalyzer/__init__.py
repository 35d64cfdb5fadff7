"""stockanalyzer — cached market data with quota-aware multi-provider updates."""

__version__ = "0.3.0"
