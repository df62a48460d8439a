"""pricepack: archive-wrapped CSV price ingestion with scoped statistics."""

__version__ = "0.1.0"
