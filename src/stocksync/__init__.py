"""StockSync - offline-first inventory synchronization."""

__version__ = "0.1.0"
