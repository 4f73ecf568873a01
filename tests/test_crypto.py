"""Tests for encryption of endpoint secrets at rest."""

import pytest

from fasthook.crypto import SEALED_PREFIX, is_sealed, open_secret, seal_secret
from fasthook.errors import StorageError

KEY = "test-encryption-key-32-bytes-long!"


class TestSealSecret:
    """Tests for sealing and opening secrets."""

    def test_round_trip(self):
        sealed = seal_secret("whsec_abc", KEY)
        assert sealed != "whsec_abc"
        assert sealed.startswith(SEALED_PREFIX)
        assert open_secret(sealed, KEY) == "whsec_abc"

    def test_no_key_is_passthrough(self):
        assert seal_secret("whsec_abc", None) == "whsec_abc"
        assert open_secret("whsec_abc", None) == "whsec_abc"

    def test_plaintext_rows_stay_readable_with_key(self):
        assert open_secret("whsec_legacy", KEY) == "whsec_legacy"

    def test_fresh_ciphertext_each_time(self):
        assert seal_secret("whsec_abc", KEY) != seal_secret("whsec_abc", KEY)

    def test_wrong_key(self):
        sealed = seal_secret("whsec_abc", KEY)
        with pytest.raises(StorageError):
            open_secret(sealed, "another-key")

    def test_missing_key(self):
        sealed = seal_secret("whsec_abc", KEY)
        with pytest.raises(StorageError):
            open_secret(sealed, None)

    def test_is_sealed(self):
        assert is_sealed(seal_secret("whsec_abc", KEY))
        assert not is_sealed("whsec_abc")
