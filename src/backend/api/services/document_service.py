"""
Document storage over S3-compatible object storage.

Documents are PDF objects in the documents bucket, keyed by filename. The
prompt library is a single JSON object in the prompts bucket. All boto3 calls
are blocking, so they run in the default executor.
"""

from __future__ import annotations

import asyncio
import base64
import io
import json

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from api.middleware.exception_handlers import DocumentNotFoundError, StorageError
from core.constants import DOCUMENT_EXTENSION
from models.analysis_models import Document, DocumentMetadata, PromptLibrary
from utils.logger import logger

if TYPE_CHECKING:
    from core.constants import Settings

T = TypeVar("T")

_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


def _is_missing(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code", "")) in _MISSING_OBJECT_CODES


def _isoformat(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return None


def extract_pdf_text(data: bytes) -> tuple[str, int]:
    """Extract text and page count from PDF bytes.

    Raises:
        PdfReadError: If the bytes are not a readable PDF.
    """
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages), len(reader.pages)


class DocumentStorage:
    """Reads documents and reads/writes the prompt library in object storage."""

    def __init__(self, settings: Settings, client: Any = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> Any:
        """Lazy-initialize boto3 client."""
        if self._client is None:
            import boto3

            client_kwargs: dict[str, Any] = {
                "service_name": "s3",
                "region_name": self.settings.s3_region,
            }

            # Only pass explicit credentials if configured (allows fallback to AWS profile/SSO)
            if self.settings.aws_access_key_id:
                client_kwargs["aws_access_key_id"] = self.settings.aws_access_key_id
            if self.settings.aws_secret_access_key:
                client_kwargs["aws_secret_access_key"] = self.settings.aws_secret_access_key

            if self.settings.s3_endpoint:
                client_kwargs["endpoint_url"] = self.settings.s3_endpoint

            self._client = boto3.client(**client_kwargs)
        return self._client

    @property
    def documents_bucket(self) -> str:
        return self.settings.documents_bucket

    @property
    def prompts_bucket(self) -> str:
        return self.settings.prompts_bucket

    async def _run(self, func: Callable[[], T]) -> T:
        """Run a blocking storage call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    async def list_documents(self) -> list[DocumentMetadata]:
        """List the PDF documents in the documents bucket.

        Raises:
            StorageError: If the bucket cannot be listed.
        """
        client = self._get_client()
        paginator = client.get_paginator("list_objects_v2")

        try:
            pages = await self._run(lambda: list(paginator.paginate(Bucket=self.documents_bucket)))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to list documents: {e}", cause=e) from e

        documents = [
            DocumentMetadata(
                id=obj["Key"],
                filename=obj["Key"],
                size_bytes=obj.get("Size"),
                last_modified=_isoformat(obj.get("LastModified")),
            )
            for page in pages
            for obj in page.get("Contents", [])
            if obj["Key"].lower().endswith(DOCUMENT_EXTENSION)
        ]
        logger.debug(f"Listed {len(documents)} documents from {self.documents_bucket}")
        return documents

    async def _get_object_bytes(self, bucket: str, key: str) -> bytes:
        client = self._get_client()

        def download() -> bytes:
            response = client.get_object(Bucket=bucket, Key=key)
            return bytes(response["Body"].read())

        return await self._run(download)

    async def get_document(self, document_id: str) -> Document:
        """Fetch one document with its base64 payload, extracted text and page count.

        Raises:
            DocumentNotFoundError: If no object exists for ``document_id``.
            StorageError: If the download fails or the object is not a readable PDF.
        """
        try:
            data = await self._get_object_bytes(self.documents_bucket, document_id)
        except ClientError as e:
            if _is_missing(e):
                raise DocumentNotFoundError(document_id) from e
            raise StorageError(f"Failed to retrieve document {document_id}: {e}", cause=e) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to retrieve document {document_id}: {e}", cause=e) from e

        try:
            text, page_count = await self._run(lambda: extract_pdf_text(data))
        except PdfReadError as e:
            raise StorageError(f"Document {document_id} is not a readable PDF: {e}", cause=e) from e

        logger.info(f"Retrieved document {document_id} ({len(data)} bytes, {page_count} pages)")
        return Document(
            id=document_id,
            filename=document_id,
            pdf_base64=base64.b64encode(data).decode("ascii"),
            extracted_text=text,
            page_count=page_count,
        )

    async def get_prompt_library(self) -> PromptLibrary:
        """Download and parse the prompt library.

        Raises:
            StorageError: If the library cannot be downloaded or parsed.
        """
        key = self.settings.prompt_library_key
        try:
            data = await self._get_object_bytes(self.prompts_bucket, key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to load prompt library {self.prompts_bucket}/{key}: {e}", cause=e) from e

        try:
            raw = json.loads(data.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StorageError(f"Prompt library {key} is not valid JSON: {e}", cause=e) from e

        if not isinstance(raw, dict) or not isinstance(raw.get("prompts"), list):
            logger.warning(f"Prompt library {key} has no prompts array, treating as empty")
            return PromptLibrary()
        return PromptLibrary.model_validate(raw)

    async def save_prompt_library(self, library: PromptLibrary) -> None:
        """Overwrite the prompt library object.

        Raises:
            StorageError: If the upload fails.
        """
        client = self._get_client()
        key = self.settings.prompt_library_key
        body = json.dumps(library.model_dump(), indent=2).encode("utf-8")

        try:
            await self._run(
                lambda: client.put_object(
                    Bucket=self.prompts_bucket,
                    Key=key,
                    Body=body,
                    ContentType="application/json",
                )
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to save prompt library: {e}", cause=e) from e

        logger.info(f"Saved prompt library ({len(library.prompts)} prompts)")


__all__ = ["DocumentStorage", "extract_pdf_text"]
