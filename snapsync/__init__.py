"""SnapSync - automated SQLite backups to Google Drive."""

__version__ = "1.0.0"
