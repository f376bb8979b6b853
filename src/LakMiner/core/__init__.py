"""Proof-of-work search, submission and round accounting."""
