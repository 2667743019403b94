import pytest

from sspnet.compressor import BUFFER_SIZE, compress, uncompress


@pytest.mark.parametrize(
    "payload",
    [b"", b"a", b"hello world" * 50, bytes(range(256)) * 10],
)
def test_round_trip(payload):
    assert uncompress(compress(payload)) == payload


def test_output_is_zlib_stream_with_default_header():
    assert compress(b"abc")[:2] == b"\x78\x9c"


def test_repetitive_data_shrinks():
    payload = b"x" * 10000
    assert len(compress(payload)) < len(payload)


def test_garbage_raises():
    with pytest.raises(ValueError):
        uncompress(b"not a zlib stream")


def test_truncated_stream_raises():
    stream = compress(b"some text to compress" * 20)
    with pytest.raises(ValueError):
        uncompress(stream[:-4])


def test_limit_is_inclusive():
    payload = b"\0" * BUFFER_SIZE
    assert len(uncompress(compress(payload))) == BUFFER_SIZE


def test_oversize_output_raises():
    with pytest.raises(ValueError):
        uncompress(compress(b"\0" * (BUFFER_SIZE + 1)))