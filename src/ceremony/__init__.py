"""Trusted-setup ceremony chain: contribution admission, audit and beacon finalization."""

__version__ = "0.4.0"
