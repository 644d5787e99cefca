import pytest

from socialmod.errors import InvalidInputError
from socialmod.repositories.feed_cursor import MAX_FEED_LIMIT, decode_cursor, encode_cursor, validate_limit


def test_cursor_round_trip():
    assert decode_cursor(encode_cursor(42)) == 42


def test_missing_cursor_starts_at_beginning():
    assert decode_cursor(None) == 0
    assert decode_cursor("") == 0


@pytest.mark.parametrize("cursor", ["not-base64!!", "eDo0Mg==", "cjphYmM="])
def test_malformed_cursor(cursor):
    with pytest.raises(InvalidInputError):
        decode_cursor(cursor)


def test_validate_limit():
    assert validate_limit(5) == 5
    assert validate_limit(10_000) == MAX_FEED_LIMIT
    with pytest.raises(InvalidInputError):
        validate_limit(0)
