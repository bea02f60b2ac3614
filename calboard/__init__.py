"""Calboard: an invitation-only shared calendar."""
