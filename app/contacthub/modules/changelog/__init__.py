"""
Changelog module: append-only activity table, filters and CSV export.
"""
