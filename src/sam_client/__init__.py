"""Front end for the Sam peer-to-peer messaging backend."""

__version__ = "0.1.0"
