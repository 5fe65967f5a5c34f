"""
Unit tests for the archive model (easybackup/backup/archive.py).
"""

from datetime import datetime

import pytest

from easybackup.backup.archive import (
    Archive,
    Location,
    is_archive_name,
    validate_archive_name,
    generate_archive_name,
    archive_timestamp,
    newest_first,
    dedupe_by_name,
    merge_locations
)
from easybackup.backup.errors import InvalidName


class TestArchiveNames:
    """Test the YYYY-MM-DD_HHMMSS.zip naming convention."""

    @pytest.mark.parametrize("name", [
        "2024-01-01_000000.zip",
        "1999-12-31_235959.zip",
    ])
    def test_valid_names(self, name):
        assert is_archive_name(name)
        assert validate_archive_name(name) == name

    @pytest.mark.parametrize("name", [
        "",
        "2024-01-01_000000.tar.gz",
        "2024-01-01-000000.zip",
        "2024-1-01_000000.zip",
        "backup_2024-01-01_000000.zip",
        "2024-01-01_000000.zip.part",
        "nested/2024-01-01_000000.zip",
    ])
    def test_invalid_names(self, name):
        assert not is_archive_name(name)
        with pytest.raises(InvalidName):
            validate_archive_name(name)

    def test_invalid_name_is_value_error(self):
        with pytest.raises(ValueError):
            validate_archive_name("foreign.txt")

    def test_generate_archive_name(self):
        name = generate_archive_name(datetime(2024, 3, 5, 7, 8, 9))

        assert name == "2024-03-05_070809.zip"
        assert is_archive_name(name)

    def test_generate_archive_name_defaults_to_now(self):
        assert is_archive_name(generate_archive_name())

    def test_archive_timestamp(self):
        name = generate_archive_name(datetime(2024, 3, 5, 7, 8, 9))

        assert archive_timestamp(name) == int(datetime(2024, 3, 5, 7, 8, 9).timestamp())

    @pytest.mark.parametrize("name", ["2024-13-01_000000.zip", "latest.zip"])
    def test_archive_timestamp_invalid(self, name):
        with pytest.raises(InvalidName):
            archive_timestamp(name)


class TestArchive:
    """Test Archive value object."""

    def test_size_mb_rounds_to_three_decimals(self):
        archive = Archive("2024-01-01_000000.zip", 1572864, 0)
        assert archive.size_mb == 1.5

        archive = Archive("2024-01-01_000000.zip", 1234567, 0)
        assert archive.size_mb == 1.177

    def test_to_dict(self):
        archive = Archive("2024-01-01_000000.zip", 1048576, 1704067200, Location.REMOTE)

        assert archive.to_dict() == {
            'name': "2024-01-01_000000.zip",
            'size_mb': 1.0,
            'modified_at': 1704067200,
            'location': 'remote'
        }


class TestOrdering:
    """Test sorting, deduplication and merging of listings."""

    def test_newest_first_by_mtime(self):
        archives = [
            Archive("2024-01-01_000000.zip", 1, 100),
            Archive("2024-01-02_000000.zip", 1, 300),
            Archive("2024-01-01_120000.zip", 1, 200),
        ]

        names = [a.name for a in newest_first(archives)]

        assert names == [
            "2024-01-02_000000.zip",
            "2024-01-01_120000.zip",
            "2024-01-01_000000.zip",
        ]

    def test_equal_mtime_ordered_by_name(self):
        archives = [
            Archive("2024-01-01_000000.zip", 1, 500),
            Archive("2024-01-02_000000.zip", 1, 500),
            Archive("2024-01-01_120000.zip", 1, 500),
        ]

        names = [a.name for a in newest_first(archives)]

        assert names == [
            "2024-01-02_000000.zip",
            "2024-01-01_120000.zip",
            "2024-01-01_000000.zip",
        ]

    def test_dedupe_drops_duplicates_and_invalid_names(self):
        archives = [
            Archive("2024-01-01_000000.zip", 1, 100),
            Archive("2024-01-01_000000.zip", 2, 200),
            Archive("notes.txt", 1, 300),
        ]

        unique = dedupe_by_name(archives)

        assert len(unique) == 1
        assert unique[0].size_bytes == 2

    def test_merge_locations(self):
        local = [
            Archive("2024-01-01_000000.zip", 1, 100, Location.LOCAL),
            Archive("2024-01-02_000000.zip", 1, 200, Location.LOCAL),
        ]
        remote = [
            Archive("2024-01-02_000000.zip", 1, 250, Location.REMOTE),
            Archive("2024-01-03_000000.zip", 1, 300, Location.REMOTE),
        ]

        merged = {a.name: a.location for a in merge_locations(local, remote)}

        assert merged == {
            "2024-01-01_000000.zip": Location.LOCAL,
            "2024-01-02_000000.zip": Location.BOTH,
            "2024-01-03_000000.zip": Location.REMOTE,
        }
