"""Builds crate documentation from the crates.io index and stores it in a database."""

__version__ = "0.6.0"