from datetime import datetime, timezone

import pytest

from pkgsearch.exceptions import ParsingError
from pkgsearch.packages import Package, parse_timestamp

from conftest import make_package


def test_document_form_round_trips() -> None:
    pkg = make_package("Foo.Bar", "A summary", 42, ["Ann", "Bob"], "2016-02-03T04:05:06Z")
    doc = pkg.to_document()
    assert doc["versions"][0]["last_updated"] == "2016-02-03T04:05:06Z"
    assert doc["authors"] == [{"name": "Ann"}, {"name": "Bob"}]
    assert doc["versions"][0]["dependencies"] == [
        {"name": "Dep.Core", "version": "[1.0, )", "framework": "net45"}
    ]
    assert Package.from_document(doc) == pkg


def test_last_updated_is_latest_version() -> None:
    pkg = make_package("Foo")
    later = make_package("Foo", updated="2018-01-01T00:00:00Z").versions[0]
    pkg.versions.append(later)
    assert pkg.last_updated == datetime(2018, 1, 1, tzinfo=timezone.utc)
    assert Package(id="Empty").last_updated is None


def test_invalid_packages_are_rejected() -> None:
    with pytest.raises(ParsingError):
        Package(id="  ")
    with pytest.raises(ParsingError):
        Package(id="Foo", download_count=-1)
    with pytest.raises(ParsingError):
        Package.from_document({"id": "Foo", "versions": [{"version": "1.0"}]})
    with pytest.raises(ParsingError):
        Package.from_document("not a document")  # type: ignore[arg-type]


def test_parse_timestamp_normalizes_to_utc() -> None:
    assert parse_timestamp("2014-05-06T07:08:09") == datetime(2014, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    assert parse_timestamp("2014-05-06T09:08:09+02:00") == datetime(2014, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    with pytest.raises(ParsingError):
        parse_timestamp("yesterday")
    with pytest.raises(ParsingError):
        parse_timestamp(None)
