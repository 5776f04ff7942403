"""Creator storefront backend: order webhook ingestion and sales reporting."""

__version__ = "0.3.0"
