"""Google Drive uploads via multipart/related requests."""

import json
import logging
from typing import Optional

import httpx

from .google_token import get_valid_access_token

logger = logging.getLogger(__name__)

DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
BOUNDARY = "-------314159265358979323846"


class DriveError(Exception):
    """Raised when Drive rejects an upload."""
    pass


def build_multipart_body(metadata: dict, content: str, content_type: str) -> str:
    delimiter = f"\r\n--{BOUNDARY}\r\n"
    close_delim = f"\r\n--{BOUNDARY}--"
    return (
        delimiter
        + "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        + json.dumps(metadata)
        + delimiter
        + f"Content-Type: {content_type}\r\n\r\n"
        + content
        + close_delim
    )


class DriveClient:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self._http_client = http_client

    async def _upload(self, metadata: dict, content: str, content_type: str, fields: str) -> dict:
        token = await get_valid_access_token()
        body = build_multipart_body(metadata, content, content_type)
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": f'multipart/related; boundary="{BOUNDARY}"',
        }
        params = {"uploadType": "multipart", "fields": fields}

        if self._http_client is not None:
            resp = await self._http_client.post(
                DRIVE_UPLOAD_URL, params=params, headers=headers, content=body.encode("utf-8")
            )
        else:
            async with httpx.AsyncClient(timeout=60) as client:
                resp = await client.post(
                    DRIVE_UPLOAD_URL, params=params, headers=headers, content=body.encode("utf-8")
                )

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error", {}).get("message", resp.text)
            except ValueError:
                detail = resp.text
            logger.error("Drive upload HTTP %s: %s", resp.status_code, detail[:500])
            raise DriveError(f"Drive upload failed: {detail}")
        return resp.json()

    async def upload_json(self, file_name: str, content: str) -> dict:
        """Upload *content* as a JSON file; returns the Drive file resource."""
        metadata = {"name": file_name, "mimeType": "application/json"}
        return await self._upload(metadata, content, "application/json", "id,name,webViewLink")

    async def create_doc(self, file_name: str, html_content: str) -> str:
        """Create a Google Doc from HTML and return its webViewLink."""
        metadata = {"name": file_name, "mimeType": "application/vnd.google-apps.document"}
        file = await self._upload(
            metadata, html_content, "text/html; charset=UTF-8", "id,webViewLink"
        )
        link = file.get("webViewLink")
        if not link:
            raise DriveError("Failed to create document or get link.")
        return link
