"""Google Drive storage using a service account."""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from vault_backup.errors import DeleteError, StorageError, UploadError
from vault_backup.storage.base import EntryKind, RemoteEntry, StorageClient

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive"]
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
LIST_FIELDS = "nextPageToken, files(id, name, createdTime, mimeType)"
HTTP_TIMEOUT = 300

_DRIVE_ERRORS = (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError)


def _parse_created_time(raw: str) -> datetime:
    return datetime.fromisoformat(raw.replace("Z", "+00:00")).astimezone(timezone.utc)


class GoogleDriveStorage(StorageClient):
    """Storage backed by the Drive v3 API."""

    def __init__(self, service: Any, credentials: Any = None, log: Optional[logging.Logger] = None):
        """
        Args:
            service: A built ``drive`` v3 service
            credentials: Credentials used to authorize a fresh HTTP transport
                per request (httplib2 transports are not thread safe)
        """
        self._service = service
        self._credentials = credentials
        self._log = log or logger

    @classmethod
    def from_service_account_info(cls, info: Union[dict, str], log: Optional[logging.Logger] = None) -> "GoogleDriveStorage":
        """Build a client from service account JSON (a dict or its string form)."""
        if isinstance(info, str):
            info = json.loads(info)
        credentials = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
        service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        return cls(service, credentials, log=log)

    @classmethod
    def from_service_account_file(cls, path: str, log: Optional[logging.Logger] = None) -> "GoogleDriveStorage":
        credentials = service_account.Credentials.from_service_account_file(path, scopes=SCOPES)
        service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        return cls(service, credentials, log=log)

    def _http(self) -> Optional[AuthorizedHttp]:
        if self._credentials is None:
            return None
        return AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=HTTP_TIMEOUT))

    def _to_entry(self, item: dict) -> Optional[RemoteEntry]:
        created_raw = item.get("createdTime")
        if not created_raw:
            self._log.warning(f"Skipping Drive item {item.get('id')} without createdTime")
            return None
        kind = EntryKind.FOLDER if item.get("mimeType") == FOLDER_MIME_TYPE else EntryKind.FILE
        return RemoteEntry(
            id=item["id"],
            name=item.get("name", ""),
            created_at=_parse_created_time(created_raw),
            kind=kind,
        )

    def list(self) -> List[RemoteEntry]:
        """List all non-trashed items visible to the service account."""
        entries: List[RemoteEntry] = []
        page_token: Optional[str] = None

        while True:
            try:
                response = (
                    self._service.files()
                    .list(
                        q="trashed = false",
                        fields=LIST_FIELDS,
                        pageSize=1000,
                        pageToken=page_token,
                        supportsAllDrives=True,
                        includeItemsFromAllDrives=True,
                    )
                    .execute(http=self._http())
                )
            except _DRIVE_ERRORS as e:
                raise StorageError(f"Unable to list files: {e}") from e

            for item in response.get("files", []):
                entry = self._to_entry(item)
                if entry:
                    entries.append(entry)

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return entries

    def upload(self, local_path: Union[str, os.PathLike], destination: str) -> str:
        """Upload ``local_path`` into the folder ``destination``."""
        path = Path(local_path)
        if not path.is_file():
            raise UploadError(f"Unable to load a file {path}")

        self._log.info(f"Uploading file {path.name} to folder: {destination}")
        media = None
        try:
            media = MediaFileUpload(str(path), mimetype="application/octet-stream", resumable=True)
            request = self._service.files().create(
                body={"name": path.name, "parents": [destination]},
                media_body=media,
                fields="id",
                supportsAllDrives=True,
            )
            http = self._http()
            response = None
            while response is None:
                status, response = request.next_chunk(http=http)
                if status:
                    self._log.debug(f"Upload of {path.name}: {int(status.progress() * 100)}%")
        except _DRIVE_ERRORS as e:
            raise UploadError(f"Unable to upload file {path}: {e}") from e
        finally:
            # MediaFileUpload holds its file open until garbage collection
            if media is not None:
                media.stream().close()

        return response["id"]

    def delete(self, entry_id: str) -> None:
        try:
            self._service.files().delete(fileId=entry_id, supportsAllDrives=True).execute(http=self._http())
        except _DRIVE_ERRORS as e:
            raise DeleteError(f"Unable to delete file {entry_id}: {e}") from e
