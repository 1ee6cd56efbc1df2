from __future__ import annotations

from familyrsvp.storage import (
    ensure_root_token,
    fetch_root_token,
    is_root_token,
    rotate_root_token,
)


def test_root_token_lifecycle():
    first = ensure_root_token()
    assert isinstance(first, str) and first
    assert ensure_root_token() == first
    assert fetch_root_token() == first
    rotated = rotate_root_token()
    assert rotated != first
    assert fetch_root_token() == rotated


def test_is_root_token_compares_against_stored_value():
    token = ensure_root_token()

    assert is_root_token(token)
    assert not is_root_token(token + "x")
    assert not is_root_token("")
    assert not is_root_token(None)
