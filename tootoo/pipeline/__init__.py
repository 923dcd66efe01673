"""Ingestion stages and the EOD run coordinator."""
