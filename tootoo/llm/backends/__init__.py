"""Vendor completion backends."""
