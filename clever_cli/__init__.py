"""Clever CLI - deploy and operate applications on Clever Cloud."""

__version__ = "0.1.0"
