"""Supabase Storage client for manually uploaded edital PDFs."""
import logging
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import httpx

from licitaradar.core.config import get_settings
from licitaradar.core.errors import NotAPdf, StorageError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", filename or "").strip("._")
    return cleaned or "edital.pdf"


class ObjectStorage:
    """Uploads files to a public Supabase Storage bucket."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings()
        self.base_url = self.settings.supabase_url.rstrip("/")
        self.bucket = self.settings.edital_upload_bucket
        self._http = http_client

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.settings.supabase_service_key)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    async def upload_pdf(
        self,
        tender_id: str,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Store an edital PDF under {tender_id}/{timestamp}-{filename}.

        Returns the public URL, which can be passed as upload_url to the
        edital analysis. Raises NotAPdf for non-PDF files and StorageError
        when the upload fails.
        """
        content_type = (content_type or "").lower()
        if "pdf" not in content_type and not (filename or "").lower().endswith(".pdf"):
            raise NotAPdf(f"O arquivo enviado não parece ser um PDF (content-type=\"{content_type or 'desconhecido'}\").")
        if not self.configured:
            raise StorageError("SUPABASE_URL ou SUPABASE_SERVICE_KEY não configuradas")

        timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        path = f"{tender_id}/{timestamp}-{safe_filename(filename)}"
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(path)}"
        headers = {
            "Authorization": f"Bearer {self.settings.supabase_service_key}",
            "apikey": self.settings.supabase_service_key,
            "Content-Type": "application/pdf",
            "x-upsert": "false",
        }

        try:
            if self._http is not None:
                response = await self._http.post(url, content=content, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.settings.pncp_timeout_seconds) as client:
                    response = await client.post(url, content=content, headers=headers)
        except httpx.RequestError as e:
            raise StorageError(f"Falha ao enviar PDF para o storage: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Storage upload failed ({response.status_code}): {response.text[:300]}")
            raise StorageError(f"Falha ao enviar PDF para o storage: {response.status_code}")

        logger.info(f"Uploaded edital for tender {tender_id} to {self.bucket}/{path} ({len(content)} bytes)")
        return self.public_url(path)
