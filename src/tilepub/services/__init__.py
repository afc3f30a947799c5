"""Extraction, publishing, download and country selection services."""
