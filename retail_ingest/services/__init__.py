"""Ingestion services: validation, format parsers, dedup and orchestration."""
