"""shopguard: admission control and rate limiting for the storefront API."""

__version__ = "0.1.0"
