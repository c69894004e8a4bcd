"""Command line interface (python -m retail_ingest.cli)."""
