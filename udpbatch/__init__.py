"""Reliable UDP delivery with batched acknowledgements and retries."""

__version__ = "0.1.0"