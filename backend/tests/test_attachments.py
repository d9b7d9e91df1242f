"""
Unit tests for the attachment storage service.
Tests validation, upload and signed URL generation.
"""

import os
import pytest
from unittest.mock import Mock, patch

from kasmail.errors import AttachmentRejected, UploadFailed
from kasmail.services.attachments import (
    ATTACHMENTS_BUCKET,
    _rewrite_signed_url_host,
    build_storage_path,
    get_attachment_url,
    resolve_mime_type,
    upload_attachment,
    validate_attachment,
)

SENDER = "kaspa:q" + "p" * 60


class TestValidateAttachment:

    def test_accepts_small_png(self):
        assert validate_attachment(b"\x89PNG....", "photo.png", "image/png") == "image/png"

    def test_rejects_file_over_limit(self):
        content = b"x" * (5 * 1024 * 1024 + 1)
        with pytest.raises(AttachmentRejected) as exc_info:
            validate_attachment(content, "big.pdf", "application/pdf")
        assert "too large" in exc_info.value.message

    def test_file_exactly_at_limit_is_accepted(self):
        content = b"x" * (5 * 1024 * 1024)
        assert validate_attachment(content, "big.pdf", "application/pdf") == "application/pdf"

    def test_rejects_disallowed_type(self):
        with pytest.raises(AttachmentRejected):
            validate_attachment(b"MZ...", "setup.exe", "application/x-msdownload")

    def test_rejects_empty_file(self):
        with pytest.raises(AttachmentRejected):
            validate_attachment(b"", "empty.txt", "text/plain")

    def test_limit_is_configurable(self):
        with patch.dict(os.environ, {"KASMAIL_ATTACHMENT_MAX_BYTES": "4"}):
            with pytest.raises(AttachmentRejected):
                validate_attachment(b"12345", "notes.txt", "text/plain")


class TestResolveMimeType:

    def test_declared_type_wins(self):
        assert resolve_mime_type("file.bin", "image/JPEG") == "image/jpeg"

    def test_parameters_are_stripped(self):
        assert resolve_mime_type("notes.txt", "text/plain; charset=utf-8") == "text/plain"

    def test_octet_stream_falls_back_to_extension(self):
        assert resolve_mime_type("report.pdf", "application/octet-stream") == "application/pdf"

    def test_unknown_extension_is_octet_stream(self):
        assert resolve_mime_type("blob.zzz-unknown", None) == "application/octet-stream"


class TestBuildStoragePath:

    def test_paths_are_unique_per_upload(self):
        first = build_storage_path(SENDER, "photo.png")
        second = build_storage_path(SENDER, "photo.png")
        assert first != second

    def test_path_is_sanitized(self):
        path = build_storage_path(SENDER, "My Photo (1).png")
        sender_segment, unique_segment, filename = path.split("/")
        assert sender_segment == SENDER.replace(":", "_")
        assert len(unique_segment) == 32
        assert filename == "My_Photo__1_.png"

    def test_uuid_segment_is_used(self):
        with patch("kasmail.services.attachments.uuid4") as mock_uuid:
            mock_uuid.return_value = Mock(hex="abc123")
            path = build_storage_path(SENDER, "a.txt")
        assert path == f"{SENDER.replace(':', '_')}/abc123/a.txt"


class TestUploadAttachment:

    @pytest.mark.asyncio
    async def test_successful_upload_returns_reference(self):
        with patch("kasmail.services.attachments.supabase_admin") as mock_supabase:
            mock_supabase.storage.from_.return_value.upload.return_value = {"path": "ignored"}

            ref = await upload_attachment(b"hello", SENDER, "hello.txt", "text/plain")

        mock_supabase.storage.from_.assert_called_once_with(ATTACHMENTS_BUCKET)
        upload_args = mock_supabase.storage.from_.return_value.upload.call_args[0]
        assert upload_args[0] == ref.storage_path
        assert upload_args[1] == b"hello"
        assert upload_args[2]["content-type"] == "text/plain"
        assert ref.original_name == "hello.txt"
        assert ref.mime_type == "text/plain"

    @pytest.mark.asyncio
    async def test_storage_error_raises_upload_failed(self):
        with patch("kasmail.services.attachments.supabase_admin") as mock_supabase:
            mock_supabase.storage.from_.return_value.upload.side_effect = Exception("Storage error")

            with pytest.raises(UploadFailed) as exc_info:
                await upload_attachment(b"hello", SENDER, "hello.txt", "text/plain")

        assert "Storage error" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_attachment_is_never_uploaded(self):
        with patch("kasmail.services.attachments.supabase_admin") as mock_supabase:
            with pytest.raises(AttachmentRejected):
                await upload_attachment(b"MZ", SENDER, "x.exe", "application/x-msdownload")

        mock_supabase.storage.from_.return_value.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_service_key_is_upload_failure(self):
        with patch("kasmail.services.attachments.supabase_admin", None):
            with pytest.raises(UploadFailed):
                await upload_attachment(b"hello", SENDER, "hello.txt", "text/plain")


class TestAttachmentUrl:

    def test_signed_url_returned(self):
        with patch("kasmail.services.attachments.supabase_admin") as mock_supabase:
            mock_supabase.storage.from_.return_value.create_signed_url.return_value = {
                "signedURL": "https://test.supabase.co/storage/v1/object/sign/attachments/a/b/c.png?token=t"
            }
            with patch.dict(os.environ, {"SUPABASE_PUBLIC_URL": ""}):
                url = get_attachment_url("a/b/c.png")

        assert url.endswith("/attachments/a/b/c.png?token=t")

    def test_missing_signed_url_raises(self):
        with patch("kasmail.services.attachments.supabase_admin") as mock_supabase:
            mock_supabase.storage.from_.return_value.create_signed_url.return_value = {}
            with pytest.raises(Exception) as exc_info:
                get_attachment_url("a/b/c.png")

        assert "Failed to generate signed URL" in str(exc_info.value)

    def test_public_url_rewrites_host(self):
        url = "http://host.docker.internal:54321/storage/v1/object/sign/attachments/f.png?token=abc"
        with patch.dict(os.environ, {"SUPABASE_PUBLIC_URL": "http://localhost:54321"}):
            result = _rewrite_signed_url_host(url)
        assert result == "http://localhost:54321/storage/v1/object/sign/attachments/f.png?token=abc"
