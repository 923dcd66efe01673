"""Candidate universe construction."""
