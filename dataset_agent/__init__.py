"""Normalize loosely-structured data sources into a uniform table."""
