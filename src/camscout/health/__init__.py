"""Periodic reachability classification of known cameras."""

from .prober import ConnectionTierProber, TierResult

__all__ = ["ConnectionTierProber", "TierResult"]
