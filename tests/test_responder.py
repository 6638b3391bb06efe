from __future__ import annotations

import asyncio
import warnings

import pytest

from mediagate.core.errors import RangeNotSatisfiable
from mediagate.media.responder import ByteRange, build_file_response, compute_etag, etag_matches, iter_file, parse_range


async def _collect(response) -> bytes:
    chunks = [chunk async for chunk in response.body_iterator]
    return b"".join(chunks)


@pytest.fixture()
def payload_file(tmp_path):
    path = tmp_path / "blob.bin"
    path.write_bytes(bytes(range(256)) * 4)
    return path


def test_parse_explicit_range():
    assert parse_range("bytes=0-99", 1000) == ByteRange(0, 99)


def test_parse_open_ended_range():
    assert parse_range("bytes=900-", 1000) == ByteRange(900, 999)


def test_parse_suffix_range():
    assert parse_range("bytes=-100", 1000) == ByteRange(900, 999)
    assert parse_range("bytes=-5000", 1000) == ByteRange(0, 999)


def test_end_is_clamped():
    assert parse_range("bytes=10-5000", 1000) == ByteRange(10, 999)


@pytest.mark.parametrize("header", [None, "", "items=0-1", "bytes=0-1,5-9", "bytes=-", "bytes=a-b"])
def test_unparseable_ranges_fall_back_to_full_body(header):
    assert parse_range(header, 1000) is None


@pytest.mark.parametrize("header", ["bytes=1000-", "bytes=1500-1600", "bytes=50-10", "bytes=-0"])
def test_unsatisfiable_ranges(header):
    with pytest.raises(RangeNotSatisfiable):
        parse_range(header, 1000)


def test_etag_format_and_matching():
    etag = compute_etag(1700000000.5, 1000)
    assert etag == '"1700000000500-1000"'
    assert etag_matches(etag, etag)
    assert etag_matches('"other", ' + etag, etag)
    assert etag_matches("*", etag)
    assert etag_matches("W/" + etag, etag)
    assert not etag_matches('"other"', etag)
    assert not etag_matches(None, etag)


def test_full_response(payload_file):
    response = build_file_response(payload_file, media_type="application/octet-stream")
    body = asyncio.run(_collect(response))
    assert response.status_code == 200
    assert response.headers["accept-ranges"] == "bytes"
    assert response.headers["content-length"] == "1024"
    assert body == payload_file.read_bytes()


def test_partial_response(payload_file):
    response = build_file_response(payload_file, media_type="application/octet-stream", range_header="bytes=0-99")
    body = asyncio.run(_collect(response))
    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 0-99/1024"
    assert response.headers["content-length"] == "100"
    assert body == payload_file.read_bytes()[:100]


def test_not_modified_response(payload_file):
    stat = payload_file.stat()
    etag = compute_etag(stat.st_mtime, stat.st_size)
    response = build_file_response(
        payload_file,
        media_type="application/octet-stream",
        if_none_match=etag,
        range_header="bytes=0-99",
    )
    assert response.status_code == 304
    assert response.headers["etag"] == etag
    assert response.body == b""


def test_unsatisfiable_response(payload_file):
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        response = build_file_response(payload_file, media_type="application/octet-stream", range_header="bytes=5000-")
    assert response.status_code == 416
    assert response.headers["content-range"] == "bytes */1024"


def test_iter_file_yields_exact_length_across_chunks(payload_file):
    async def scenario():
        return [chunk async for chunk in iter_file(payload_file, 10, 300, chunk_size=64)]

    chunks = asyncio.run(scenario())
    assert sum(len(chunk) for chunk in chunks) == 300
    assert b"".join(chunks) == payload_file.read_bytes()[10:310]
