from __future__ import annotations

import re

import pytest

from bubblesync.domain.files import (
    FILE_FIELDS,
    build_target_filename,
    is_external_url,
    normalize_source_url,
    sanitize_filename,
    serving_url,
    split_source_name,
)

BASE_URL = "https://admin.atap.solar"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("//s3.amazonaws.com/appforest/roof.jpg", True),
        ("https://cdn.bubble.io/f123/bill.pdf", True),
        ("http://example.com/a.png", True),
        ("/storage/seda/a.jpg", False),
        ("/api/files/seda/roof_images/1_roof_1.jpg", False),
        (f"{BASE_URL}/api/files/seda/roof_images/1_roof_1.jpg", False),
        (f"{BASE_URL}/storage/a.jpg", False),
        ("", False),
        ("   ", False),
        ("relative/path.jpg", False),
        (None, False),
    ],
)
def test_is_external_url(value: object, expected: bool) -> None:
    assert is_external_url(value, BASE_URL) is expected


def test_normalize_source_url_adds_scheme_to_protocol_relative() -> None:
    assert normalize_source_url("//host/a.jpg") == "https://host/a.jpg"
    assert normalize_source_url("https://host/a.jpg") == "https://host/a.jpg"


def test_sanitize_filename_keeps_safe_characters() -> None:
    assert sanitize_filename("Roof photo_1-final.JPG") == "Roof photo_1-final.JPG"
    assert sanitize_filename("bil (1)") == "bil %281%29"
    assert sanitize_filename("café") == "caf%C3%A9"


def test_sanitized_names_use_allowed_alphabet_only() -> None:
    sanitized = sanitize_filename("我的/文件?#&.pdf")

    assert re.fullmatch(r"[A-Za-z0-9 ._%-]+", sanitized)
    assert "/" not in sanitized


def test_split_source_name_decodes_and_strips_query() -> None:
    assert split_source_name("//host/path/TNB%20Bill.pdf?x=1#frag") == ("TNB Bill", ".pdf")
    assert split_source_name("https://host/path/noext") == ("noext", ".jpg")


def test_build_target_filename() -> None:
    name = build_target_filename(17, "//host/f/TNB%20Bill%20(May).pdf", 1700000000000)

    assert name == "17_TNB Bill %28May%29_1700000000000.pdf"


def test_build_target_filename_sequence_disambiguates() -> None:
    first = build_target_filename(1, "//host/a/roof.jpg", 5)
    second = build_target_filename(1, "//host/b/roof.jpg", 5, sequence=1)

    assert first == "1_roof_5.jpg"
    assert second == "1_roof-1_5.jpg"


def test_serving_url() -> None:
    assert (
        serving_url(BASE_URL + "/", "seda/roof_images", "1_roof_5.jpg")
        == f"{BASE_URL}/api/files/seda/roof_images/1_roof_5.jpg"
    )


def test_file_fields_cover_registration_documents_and_payment_attachments() -> None:
    columns = {(spec.kind.value, spec.column): spec.is_array for spec in FILE_FIELDS}

    assert columns[("seda_registration", "tnb_meter")] is False
    assert columns[("seda_registration", "roof_images")] is True
    assert columns[("payment", "attachment")] is True
    assert len(columns) == len(FILE_FIELDS)
