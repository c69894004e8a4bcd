"""Spreadsheet decoding, structural edits and header normalization."""
