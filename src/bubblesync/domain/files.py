"""Attachment fields and filename rules for migrated files."""

from __future__ import annotations

import posixpath
import string
from dataclasses import dataclass
from typing import Final
from urllib.parse import unquote, urlsplit

from .entities import EntityKind

DEFAULT_EXTENSION: Final[str] = ".jpg"
LOCAL_PREFIXES: Final[tuple[str, ...]] = ("/storage/", "/api/files/")

_SAFE_CHARACTERS: Final[frozenset[str]] = frozenset(
    string.ascii_letters + string.digits + " ._-"
)


@dataclass(frozen=True, slots=True)
class FileFieldSpec:
    kind: EntityKind
    column: str
    is_array: bool
    subfolder: str


def _single(kind: EntityKind, column: str, subfolder: str) -> FileFieldSpec:
    return FileFieldSpec(kind, column, is_array=False, subfolder=subfolder)


def _array(kind: EntityKind, column: str, subfolder: str) -> FileFieldSpec:
    return FileFieldSpec(kind, column, is_array=True, subfolder=subfolder)


_SEDA = EntityKind.SEDA_REGISTRATION

FILE_FIELDS: Final[tuple[FileFieldSpec, ...]] = (
    _single(_SEDA, "customer_signature", "seda/signatures"),
    _single(_SEDA, "ic_copy_front", "seda/ic_copies"),
    _single(_SEDA, "ic_copy_back", "seda/ic_copies"),
    _single(_SEDA, "tnb_bill_1", "seda/tnb_bills"),
    _single(_SEDA, "tnb_bill_2", "seda/tnb_bills"),
    _single(_SEDA, "tnb_bill_3", "seda/tnb_bills"),
    _single(_SEDA, "tnb_meter", "seda/tnb_meters"),
    _single(_SEDA, "nem_cert", "seda/certificates"),
    _single(_SEDA, "mykad_pdf", "seda/mykad"),
    _single(_SEDA, "property_ownership_prove", "seda/ownership"),
    _single(_SEDA, "check_tnb_bill_and_meter_image", "seda/checks"),
    _array(_SEDA, "roof_images", "seda/roof_images"),
    _array(_SEDA, "site_images", "seda/site_images"),
    _array(_SEDA, "drawing_pdf_system", "seda/drawings"),
    _array(_SEDA, "drawing_system_actual", "seda/drawings"),
    _array(_SEDA, "drawing_engineering_seda_pdf", "seda/drawings"),
    _array(EntityKind.PAYMENT, "attachment", "payments/attachments"),
)


def is_external_url(value: object, file_base_url: str) -> bool:
    """Return whether ``value`` points at a remotely hosted file that needs migrating.

    Paths under the local serving prefixes (bare or behind ``file_base_url``) are
    already migrated. Absolute ``http(s)`` URLs and protocol-relative ``//host``
    URLs, which the remote platform uses for its own file storage, are external.
    """

    if not isinstance(value, str) or not value.strip():
        return False
    text = value.strip()
    base = file_base_url.rstrip("/")
    for prefix in LOCAL_PREFIXES:
        if text.startswith(prefix) or (base and text.startswith(base + prefix)):
            return False
    return text.startswith(("//", "http://", "https://"))


def normalize_source_url(value: str) -> str:
    text = value.strip()
    return f"https:{text}" if text.startswith("//") else text


def sanitize_filename(name: str) -> str:
    """Keep ``[A-Za-z0-9 ._-]`` and percent-encode everything else as UTF-8."""

    return "".join(
        character
        if character in _SAFE_CHARACTERS
        else "".join(f"%{byte:02X}" for byte in character.encode("utf-8"))
        for character in name
    )


def split_source_name(url: str) -> tuple[str, str]:
    """Return the decoded ``(stem, extension)`` of the last path segment of ``url``."""

    path = urlsplit(normalize_source_url(url)).path
    basename = unquote(posixpath.basename(path.rstrip("/")))
    stem, extension = posixpath.splitext(basename)
    if not stem:
        stem, extension = basename or "file", ""
    return stem, extension or DEFAULT_EXTENSION


def build_target_filename(
    local_id: int,
    url: str,
    timestamp_ms: int,
    *,
    sequence: int = 0,
) -> str:
    """Return ``{local_id}_{sanitized stem}_{timestamp_ms}{ext}`` for ``url``.

    A positive ``sequence`` is appended to the stem to separate equal names within
    one record.
    """

    stem, extension = split_source_name(url)
    if sequence:
        stem = f"{stem}-{sequence}"
    return f"{local_id}_{sanitize_filename(stem)}_{timestamp_ms}{sanitize_filename(extension)}"


def serving_url(file_base_url: str, subfolder: str, filename: str) -> str:
    return f"{file_base_url.rstrip('/')}/api/files/{subfolder}/{filename}"
