"""Vault collaborator: credentials, HTTP client and the renewal loop."""

from vault_backup.vault.client import VaultClient
from vault_backup.vault.credential import Credential, CredentialHandle, LeaseStatus
from vault_backup.vault.renewal import RenewalLoop, RenewalState

__all__ = [
    "Credential",
    "CredentialHandle",
    "LeaseStatus",
    "RenewalLoop",
    "RenewalState",
    "VaultClient",
]
