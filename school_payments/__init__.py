"""School fee payment aggregator."""

__version__ = "0.1.0"
