"""
Google Drive client for vault documents.

Creates the secret document (a Google Doc converted from plain text) and
grants trustees reader access. Uses the Drive v3 REST API over httpx with a
bearer token; token refresh is left to whatever provisions KEEPER_DRIVE_TOKEN.

Usage:
    drive = DriveClient(cfg.drive)
    doc = await drive.create_document("My vault", "the secret")
    await drive.share(doc.id, "trustee@example.com")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import httpx

from keeper.config import DriveConfig
from keeper.errors import DeliveryError

logger = logging.getLogger(__name__)

GOOGLE_DOC_MIME = "application/vnd.google-apps.document"
_BOUNDARY = "keeper-vault-boundary"


@dataclass(frozen=True)
class CreatedDocument:
    id: str
    url: str


def document_url(document_id: str) -> str:
    return f"https://docs.google.com/document/d/{document_id}/edit"


class DriveClient:
    def __init__(self, config: DriveConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.access_token}"}

    async def create_document(self, title: str, content: str) -> CreatedDocument:
        """Upload ``content`` as a new Google Doc and return its id and URL."""
        metadata = json.dumps({"name": title, "mimeType": GOOGLE_DOC_MIME})
        body = (
            f"--{_BOUNDARY}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{metadata}\r\n"
            f"--{_BOUNDARY}\r\n"
            "Content-Type: text/plain; charset=UTF-8\r\n\r\n"
            f"{content}\r\n"
            f"--{_BOUNDARY}--"
        )
        headers = self._headers()
        headers["Content-Type"] = f"multipart/related; boundary={_BOUNDARY}"

        try:
            r = await self._http().post(
                f"{self.config.api_base}/upload/drive/v3/files",
                params={"uploadType": "multipart", "fields": "id"},
                content=body.encode("utf-8"),
                headers=headers,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError("drive", title, e) from e

        document_id = r.json()["id"]
        logger.info("Created document %s (%s)", document_id, title)
        return CreatedDocument(id=document_id, url=document_url(document_id))

    async def share(self, resource_ref: str, email: str) -> None:
        """Grant ``email`` reader access to a file or folder."""
        try:
            r = await self._http().post(
                f"{self.config.api_base}/drive/v3/files/{resource_ref}/permissions",
                params={"sendNotificationEmail": "false"},
                json={"role": "reader", "type": "user", "emailAddress": email},
                headers=self._headers(),
            )
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise DeliveryError("drive", email, f"resource {resource_ref} not found") from e
            raise DeliveryError("drive", email, e) from e
        except httpx.HTTPError as e:
            raise DeliveryError("drive", email, e) from e
        logger.info("Shared %s with %s", resource_ref, email)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
