"""Tests for the random password generator."""

import pytest

from secure_vault.vault.exceptions import ValidationError
from secure_vault.vault.generator import DEFAULT_ALPHABET, DEFAULT_LENGTH, generate_password


class TestGeneratePassword:

    def test_default_length_and_alphabet(self):
        password = generate_password()
        assert len(password) == DEFAULT_LENGTH
        assert set(password) <= set(DEFAULT_ALPHABET)

    @pytest.mark.parametrize("length", [4, 32, 128])
    def test_lengths(self, length):
        assert len(generate_password(length)) == length

    @pytest.mark.parametrize("length", [0, 3, 129])
    def test_out_of_range(self, length):
        with pytest.raises(ValidationError):
            generate_password(length)

    def test_custom_alphabet(self):
        assert set(generate_password(20, alphabet="ab")) <= {"a", "b"}

    def test_empty_alphabet(self):
        with pytest.raises(ValidationError):
            generate_password(10, alphabet="")

    def test_not_repeated(self):
        assert len({generate_password(24) for _ in range(20)}) == 20
