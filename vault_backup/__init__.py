"""Vault Raft snapshot backups to Google Drive."""

__version__ = "1.0.0"
