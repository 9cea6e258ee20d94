"""Digital goods shop backend: inventory, wallet ledger, checkout and payment webhooks"""
__version__ = "1.0.0"
