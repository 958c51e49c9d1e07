"""Loyalty maintenance jobs."""

from .expiry import expire_loyalty_points

__all__ = ["expire_loyalty_points"]
