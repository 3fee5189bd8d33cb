"""Snapshot, remote storage and restore of the live database."""
