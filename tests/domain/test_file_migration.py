from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from bubblesync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork
from bubblesync.domain.entities import EntityKind
from bubblesync.domain.file_migration import migrate_files, migration_stats
from tests.helpers.records import FakeDownloader, store_raw

UowFactory = Callable[[], SqlAlchemySyncUnitOfWork]

BASE_URL = "https://admin.atap.solar"
NOW = datetime(2024, 6, 1, tzinfo=UTC)
STAMP = int(NOW.timestamp() * 1000)


def _registration(uow: UowFactory, **fields: object) -> None:
    store_raw(uow, EntityKind.SEDA_REGISTRATION, {"_id": "R1", **fields})


def _stored(uow: UowFactory, kind: EntityKind, external_id: str) -> dict[str, object]:
    with uow() as session_uow:
        record = session_uow.repositories.for_kind(kind).get(external_id)
    assert record is not None
    return dict(record.values)


def test_dry_run_reports_without_downloading(
    sqlite_unit_of_work: UowFactory,
    tmp_path: Path,
) -> None:
    _registration(
        sqlite_unit_of_work,
        **{"TNB Meter": "//cdn.example/meter.jpg", "Roof Images": ["//cdn/a.jpg", "//cdn/b.jpg"]},
    )
    downloader = FakeDownloader(tmp_path)

    report = migrate_files(
        sqlite_unit_of_work, downloader, file_base_url=BASE_URL, dry_run=True, now=NOW
    )

    assert report.dry_run
    assert report.scanned == 3
    assert report.pending == 3
    assert report.migrated == 0
    assert downloader.jobs == []
    assert report.by_field == {
        "seda_registration.tnb_meter": 1,
        "seda_registration.roof_images": 2,
    }


def test_migrates_single_and_array_fields(sqlite_unit_of_work: UowFactory, tmp_path: Path) -> None:
    _registration(
        sqlite_unit_of_work,
        **{
            "TNB Meter": "//cdn.example/meter.jpg",
            "Roof Images": ["//cdn/roof.jpg", "/api/files/seda/roof_images/old.jpg"],
        },
    )
    downloader = FakeDownloader(tmp_path, content=b"12345")

    report = migrate_files(sqlite_unit_of_work, downloader, file_base_url=BASE_URL, now=NOW)

    assert report.migrated == 2
    assert report.skipped == 1
    assert report.failed == 0
    assert report.total_bytes == 10
    values = _stored(sqlite_unit_of_work, EntityKind.SEDA_REGISTRATION, "R1")
    assert values["tnb_meter"] == f"{BASE_URL}/api/files/seda/tnb_meters/1_meter_{STAMP}.jpg"
    assert values["roof_images"] == [
        f"{BASE_URL}/api/files/seda/roof_images/1_roof_{STAMP}.jpg",
        "/api/files/seda/roof_images/old.jpg",
    ]
    assert (tmp_path / "seda" / "tnb_meters" / f"1_meter_{STAMP}.jpg").read_bytes() == b"12345"


def test_second_run_finds_nothing_to_migrate(
    sqlite_unit_of_work: UowFactory,
    tmp_path: Path,
) -> None:
    _registration(sqlite_unit_of_work, **{"TNB Meter": "//cdn.example/meter.jpg"})
    migrate_files(sqlite_unit_of_work, FakeDownloader(tmp_path), file_base_url=BASE_URL, now=NOW)

    downloader = FakeDownloader(tmp_path)
    report = migrate_files(sqlite_unit_of_work, downloader, file_base_url=BASE_URL, now=NOW)

    assert report.pending == 0
    assert report.skipped == 1
    assert downloader.jobs == []


def test_failed_download_leaves_field_unchanged(
    sqlite_unit_of_work: UowFactory,
    tmp_path: Path,
) -> None:
    _registration(
        sqlite_unit_of_work,
        **{"TNB Meter": "//cdn.example/meter.jpg", "NEM Cert": "//cdn.example/cert.pdf"},
    )
    downloader = FakeDownloader(tmp_path, failing={"https://cdn.example/meter.jpg"})

    report = migrate_files(sqlite_unit_of_work, downloader, file_base_url=BASE_URL, now=NOW)

    assert report.failed == 1
    assert report.migrated == 1
    assert [failure.column for failure in report.failures] == ["tnb_meter"]
    values = _stored(sqlite_unit_of_work, EntityKind.SEDA_REGISTRATION, "R1")
    assert values["tnb_meter"] == "//cdn.example/meter.jpg"
    assert values["nem_cert"] == f"{BASE_URL}/api/files/seda/certificates/1_cert_{STAMP}.pdf"


def test_element_changed_during_download_is_not_overwritten(
    sqlite_unit_of_work: UowFactory,
    tmp_path: Path,
) -> None:
    store_raw(
        sqlite_unit_of_work,
        EntityKind.PAYMENT,
        {"_id": "P1", "Attachment": ["//cdn/receipt.jpg"]},
    )

    def edit_concurrently() -> None:
        with sqlite_unit_of_work() as uow:
            uow.repositories.payments.replace_value(
                "P1",
                "attachment",
                expected=["//cdn/receipt.jpg"],
                value=["//cdn/other.jpg"],
            )
            uow.commit()

    downloader = FakeDownloader(tmp_path, before_return=edit_concurrently)
    report = migrate_files(sqlite_unit_of_work, downloader, file_base_url=BASE_URL, now=NOW)

    assert report.migrated == 0
    assert report.stale == 1
    values = _stored(sqlite_unit_of_work, EntityKind.PAYMENT, "P1")
    assert values["attachment"] == ["//cdn/other.jpg"]


def test_duplicate_names_within_a_record_get_sequence(
    sqlite_unit_of_work: UowFactory,
    tmp_path: Path,
) -> None:
    _registration(
        sqlite_unit_of_work,
        **{"Site Images": ["//cdn/a/photo.jpg", "//cdn/b/photo.jpg"]},
    )
    downloader = FakeDownloader(tmp_path)

    migrate_files(sqlite_unit_of_work, downloader, file_base_url=BASE_URL, now=NOW)

    assert [job.filename for job in downloader.jobs] == [
        f"1_photo_{STAMP}.jpg",
        f"1_photo-1_{STAMP}.jpg",
    ]


def test_kind_filter_and_stats(sqlite_unit_of_work: UowFactory) -> None:
    _registration(sqlite_unit_of_work, **{"TNB Meter": "//cdn.example/meter.jpg"})
    store_raw(
        sqlite_unit_of_work,
        EntityKind.PAYMENT,
        {"_id": "P1", "Attachment": ["//cdn/receipt.jpg"]},
    )

    all_kinds = migration_stats(sqlite_unit_of_work, file_base_url=BASE_URL)
    payments_only = migration_stats(
        sqlite_unit_of_work, file_base_url=BASE_URL, kinds={EntityKind.PAYMENT}
    )

    assert all_kinds == {"seda_registration.tnb_meter": 1, "payment.attachment": 1}
    assert payments_only == {"payment.attachment": 1}


def test_migration_writes_activity_entry(sqlite_unit_of_work: UowFactory, tmp_path: Path) -> None:
    _registration(sqlite_unit_of_work, **{"TNB Meter": "//cdn.example/meter.jpg"})

    migrate_files(sqlite_unit_of_work, FakeDownloader(tmp_path), file_base_url=BASE_URL, now=NOW)

    with sqlite_unit_of_work() as uow:
        entries = uow.repositories.activity.latest(5)
    assert entries[0].message.startswith("File migration finished: migrated=1")


def test_fields_sharing_a_subfolder_get_distinct_files(
    sqlite_unit_of_work: UowFactory,
    tmp_path: Path,
) -> None:
    _registration(
        sqlite_unit_of_work,
        **{"TNB Bill 1": "https://cdn/a/bill.pdf", "TNB Bill 2": "https://cdn/b/bill.pdf"},
    )
    downloader = FakeDownloader(
        tmp_path,
        contents={"https://cdn/a/bill.pdf": b"january", "https://cdn/b/bill.pdf": b"february"},
    )

    report = migrate_files(sqlite_unit_of_work, downloader, file_base_url=BASE_URL, now=NOW)

    assert report.migrated == 2
    values = _stored(sqlite_unit_of_work, EntityKind.SEDA_REGISTRATION, "R1")
    prefix = f"{BASE_URL}/api/files/seda/tnb_bills/"
    assert values["tnb_bill_1"] == f"{prefix}1_bill_{STAMP}.pdf"
    assert values["tnb_bill_2"] == f"{prefix}1_bill-1_{STAMP}.pdf"
    folder = tmp_path / "seda" / "tnb_bills"
    assert (folder / f"1_bill_{STAMP}.pdf").read_bytes() == b"january"
    assert (folder / f"1_bill-1_{STAMP}.pdf").read_bytes() == b"february"
