"""pricecheck: price resolution and prediction verification."""

__version__ = "0.3.0"
