"""
Supabase Storage service for message attachments.
Handles validation, upload and signed URL generation.

Every upload gets a fresh UUID segment in its path, so two uploads never
collide. Blobs whose dispatch later fails are left in place.
"""

import logging
import mimetypes
import os
import re
from typing import Optional
from urllib.parse import urlparse, urlunparse
from uuid import uuid4

from fastapi.concurrency import run_in_threadpool

from kasmail.db import supabase_admin
from kasmail.errors import AttachmentRejected, UploadFailed
from kasmail.models.message import AttachmentRef

logger = logging.getLogger(__name__)

ATTACHMENTS_BUCKET = "attachments"
DEFAULT_ATTACHMENT_MAX_BYTES = 5 * 1024 * 1024  # 5MB

ALLOWED_ATTACHMENT_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "text/csv",
    "application/zip",
})


def get_attachment_max_bytes() -> int:
    return int(os.getenv("KASMAIL_ATTACHMENT_MAX_BYTES", DEFAULT_ATTACHMENT_MAX_BYTES))


def _sanitize(segment: str) -> str:
    """Replace spaces and special chars with underscores."""
    return re.sub(r'[^\w\-.]', '_', segment)


def resolve_mime_type(filename: str, content_type: Optional[str]) -> str:
    """
    Prefer the declared content type; fall back to the extension when the
    client sent nothing useful.
    """
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def validate_attachment(content: bytes, filename: str, content_type: Optional[str] = None) -> str:
    """
    Check an attachment against the size and type constraints.

    Returns:
        The resolved MIME type.

    Raises:
        AttachmentRejected: empty, too large, or type not allowed
    """
    max_bytes = get_attachment_max_bytes()
    if not content:
        raise AttachmentRejected("Attachment is empty")
    if len(content) > max_bytes:
        raise AttachmentRejected(f"File too large (max {max_bytes // (1024 * 1024)}MB)")

    mime_type = resolve_mime_type(filename, content_type)
    if mime_type not in ALLOWED_ATTACHMENT_TYPES:
        raise AttachmentRejected(f"File type {mime_type!r} is not allowed")
    return mime_type


def build_storage_path(sender_address: str, filename: str) -> str:
    """Storage path: {sender}/{uuid}/{sanitized_filename}"""
    return f"{_sanitize(sender_address)}/{uuid4().hex}/{_sanitize(filename) or 'attachment'}"


def _upload_sync(storage_path: str, content: bytes, mime_type: str) -> None:
    if not supabase_admin:
        raise ValueError("SUPABASE_SERVICE_KEY is required for storage operations")

    supabase_admin.storage.from_(ATTACHMENTS_BUCKET).upload(
        storage_path,
        content,
        {
            "content-type": mime_type,
            "upsert": "false",  # paths are unique; never overwrite
        },
    )


async def upload_attachment(
    content: bytes,
    sender_address: str,
    filename: str,
    content_type: Optional[str] = None,
) -> AttachmentRef:
    """
    Validate and upload an attachment to Supabase Storage.

    Raises:
        AttachmentRejected: constraints violated (nothing uploaded)
        UploadFailed: storage rejected or failed the upload
    """
    mime_type = validate_attachment(content, filename, content_type)
    storage_path = build_storage_path(sender_address, filename)

    try:
        await run_in_threadpool(_upload_sync, storage_path, content, mime_type)
    except Exception as e:
        logger.error(f"Attachment upload to {storage_path} failed: {e}")
        raise UploadFailed(f"Attachment upload failed: {str(e)}", cause=e)

    logger.info(f"Uploaded attachment {storage_path} ({len(content)} bytes, {mime_type})")
    return AttachmentRef(storage_path=storage_path, original_name=filename, mime_type=mime_type)


def _rewrite_signed_url_host(signed_url: str) -> str:
    """
    Replace the host in a signed URL with SUPABASE_PUBLIC_URL when set.

    Inside Docker the backend reaches Supabase through an internal host that a
    browser cannot resolve.
    """
    public_url = os.getenv("SUPABASE_PUBLIC_URL", "").strip()
    if not public_url:
        return signed_url

    parsed_signed = urlparse(signed_url)
    parsed_public = urlparse(public_url)

    return urlunparse((
        parsed_public.scheme,
        parsed_public.netloc,
        parsed_signed.path,
        parsed_signed.params,
        parsed_signed.query,
        parsed_signed.fragment,
    ))


def get_attachment_url(storage_path: str, expiry_seconds: int = 3600) -> str:
    """
    Generate a signed URL for reading an attachment.

    Raises:
        Exception: If URL generation fails
    """
    if not supabase_admin:
        raise ValueError("SUPABASE_SERVICE_KEY is required for storage operations")

    try:
        result = supabase_admin.storage.from_(ATTACHMENTS_BUCKET).create_signed_url(
            storage_path,
            expiry_seconds
        )

        if not result or "signedURL" not in result:
            raise Exception("No signed URL returned from storage")

        return _rewrite_signed_url_host(result["signedURL"])
    except Exception as e:
        raise Exception(f"Failed to generate signed URL: {str(e)}")
