"""
Klaviyo marketing manager.

Read-only client and CLI for the Klaviyo REST API with an in-process
response cache.
"""

__version__ = "0.1.0"
