import pytest

from socialmod.errors import InvalidInputError
from socialmod.util.handles import MAX_HANDLE_LENGTH, new_handle, validate_blob_handle, validate_handle


def test_new_handle_is_a_valid_blob_handle():
    handle = new_handle()
    assert len(handle) == 32
    assert validate_blob_handle(handle) == handle
    assert new_handle() != handle


@pytest.mark.parametrize("value", ["", None, "has space", "tab\there", "x" * (MAX_HANDLE_LENGTH + 1)])
def test_validate_handle_rejects(value):
    with pytest.raises(InvalidInputError):
        validate_handle(value, "app_handle")


def test_validate_handle_accepts_opaque_strings():
    assert validate_handle("app-1.prod") == "app-1.prod"


@pytest.mark.parametrize("value", ["ABC", "abcdef0123", "ABCDEF01t", "ABCDEF01-2"])
def test_validate_blob_handle_rejects_non_uppercase_handles(value):
    with pytest.raises(InvalidInputError):
        validate_blob_handle(value)


def test_invalid_input_is_also_value_error():
    with pytest.raises(ValueError):
        validate_handle("")
