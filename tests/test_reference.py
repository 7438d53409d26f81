"""Tests for reference code and secret generation."""

import pytest

from stashway.models.payment import REFERENCE_CODE_ALPHABET, REFERENCE_SECRET_ALPHABET
from stashway.payments import generate_reference_code, generate_reference_secret


class TestReferenceCodes:

    def test_alphabet_excludes_ambiguous_symbols(self):
        assert len(REFERENCE_CODE_ALPHABET) == 32
        assert not set("IO01") & set(REFERENCE_CODE_ALPHABET)

    def test_codes_are_24_chars_from_alphabet(self):
        for _ in range(500):
            code = generate_reference_code()
            assert len(code) == 24
            assert set(code) <= set(REFERENCE_CODE_ALPHABET)

    def test_codes_are_distinct(self):
        codes = {generate_reference_code() for _ in range(200)}
        assert len(codes) == 200


class TestReferenceSecrets:

    def test_secret_length_and_alphabet(self):
        assert len(REFERENCE_SECRET_ALPHABET) == 62
        for _ in range(200):
            secret = generate_reference_secret()
            assert len(secret) >= 32
            assert set(secret) <= set(REFERENCE_SECRET_ALPHABET)

    def test_longer_secret(self):
        assert len(generate_reference_secret(64)) == 64

    def test_short_secret_refused(self):
        with pytest.raises(ValueError):
            generate_reference_secret(16)
