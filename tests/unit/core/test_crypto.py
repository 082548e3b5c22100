# tests/unit/core/test_crypto.py
"""Tests for streaming AES-GCM artifact encryption."""

import io

import pytest
from pydantic import SecretStr

KEY = SecretStr("correct horse battery staple")


def _encrypt(plaintext: bytes, key: SecretStr = KEY, chunk: int = 7) -> bytes:
    from sluice.core.crypto import AesGcmEncryption

    sink = io.BytesIO()
    writer = AesGcmEncryption(key).writer(sink)
    for start in range(0, len(plaintext), chunk):
        writer.write(plaintext[start : start + chunk])
    writer.finalize()
    return sink.getvalue()


class TestAesGcmEncryption:
    def test_round_trip(self) -> None:
        from sluice.core.crypto import AesGcmEncryption

        plaintext = b"physical backup bytes" * 1000
        ciphertext = _encrypt(plaintext)

        recovered = io.BytesIO()
        AesGcmEncryption(KEY).decrypt(io.BytesIO(ciphertext), recovered)

        assert recovered.getvalue() == plaintext

    def test_layout_has_header_and_tag(self) -> None:
        from sluice.core.crypto import HEADER_SIZE, MAGIC, TAG_SIZE

        plaintext = b"x" * 100
        ciphertext = _encrypt(plaintext)

        assert ciphertext.startswith(MAGIC)
        assert len(ciphertext) == HEADER_SIZE + len(plaintext) + TAG_SIZE
        assert plaintext not in ciphertext

    def test_same_input_encrypts_differently(self) -> None:
        assert _encrypt(b"same") != _encrypt(b"same")

    def test_wrong_key_fails_authentication(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        ciphertext = _encrypt(b"secret rows")

        with pytest.raises(CipherError, match="authentication failed"):
            AesGcmEncryption(SecretStr("wrong")).decrypt(io.BytesIO(ciphertext), io.BytesIO())

    def test_tampered_ciphertext_fails_authentication(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import HEADER_SIZE, AesGcmEncryption

        ciphertext = bytearray(_encrypt(b"secret rows" * 10))
        ciphertext[HEADER_SIZE + 3] ^= 0xFF

        with pytest.raises(CipherError, match="authentication failed"):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(bytes(ciphertext)), io.BytesIO())

    def test_bad_magic_rejected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        with pytest.raises(CipherError, match="bad magic"):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(b"NOTIT" + b"\x00" * 64), io.BytesIO())

    def test_too_small_rejected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        with pytest.raises(CipherError, match="too small"):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(b"SLCE1"), io.BytesIO())

    def test_empty_passphrase_rejected(self) -> None:
        from sluice.core.crypto import AesGcmEncryption

        with pytest.raises(ValueError, match="must not be empty"):
            AesGcmEncryption(SecretStr(""))

    def test_write_after_finalize_rejected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        writer = AesGcmEncryption(KEY).writer(io.BytesIO())
        writer.finalize()

        with pytest.raises(CipherError, match="write after finalize"):
            writer.write(b"late")

    def test_passphrase_not_in_repr(self) -> None:
        from sluice.core.crypto import AesGcmEncryption

        provider = AesGcmEncryption(KEY)

        assert KEY.get_secret_value() not in repr(vars(provider))




SEGMENT = 16


def _encrypt_segmented(plaintext: bytes, segment_size: int = SEGMENT) -> bytes:
    from sluice.core.crypto import AesGcmEncryption

    sink = io.BytesIO()
    writer = AesGcmEncryption(KEY, segment_size=segment_size).writer(sink)
    for start in range(0, len(plaintext), 5):
        writer.write(plaintext[start : start + 5])
    writer.finalize()
    return sink.getvalue()


def _segments(ciphertext: bytes, segment_size: int = SEGMENT) -> tuple[bytes, list[bytes]]:
    from sluice.core.crypto import HEADER_SIZE, TAG_SIZE

    sealed = segment_size + TAG_SIZE
    body = ciphertext[HEADER_SIZE:]
    return ciphertext[:HEADER_SIZE], [body[i : i + sealed] for i in range(0, len(body), sealed)]


class TestSegmentedStream:
    """Archives are sealed as a sequence of independently authenticated segments."""

    @pytest.mark.parametrize("size", [0, 1, SEGMENT - 1, SEGMENT, SEGMENT + 1, 3 * SEGMENT, 3 * SEGMENT + 7])
    def test_round_trip_across_segment_boundaries(self, size: int) -> None:
        from sluice.core.crypto import AesGcmEncryption

        plaintext = bytes(range(256)) * (size // 256 + 1)
        plaintext = plaintext[:size]

        recovered = io.BytesIO()
        AesGcmEncryption(KEY).decrypt(io.BytesIO(_encrypt_segmented(plaintext)), recovered)

        assert recovered.getvalue() == plaintext

    def test_segment_count_and_size(self) -> None:
        from sluice.core.crypto import HEADER_SIZE, TAG_SIZE

        plaintext = b"p" * (3 * SEGMENT + 7)
        ciphertext = _encrypt_segmented(plaintext)

        assert len(ciphertext) == HEADER_SIZE + len(plaintext) + 4 * TAG_SIZE

    def test_exact_multiple_keeps_full_final_segment(self) -> None:
        from sluice.core.crypto import TAG_SIZE

        _, segments = _segments(_encrypt_segmented(b"q" * (2 * SEGMENT)))

        assert [len(s) for s in segments] == [SEGMENT + TAG_SIZE, SEGMENT + TAG_SIZE]

    def test_dropped_trailing_segment_detected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        header, segments = _segments(_encrypt_segmented(b"r" * (3 * SEGMENT + 7)))
        truncated = header + b"".join(segments[:-1])

        with pytest.raises(CipherError, match="authentication failed"):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(truncated), io.BytesIO())

    def test_partial_segment_truncation_detected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        ciphertext = _encrypt_segmented(b"s" * (3 * SEGMENT + 7))

        with pytest.raises(CipherError):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(ciphertext[:-5]), io.BytesIO())

    def test_header_only_detected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        header, _ = _segments(_encrypt_segmented(b"t" * 40))

        with pytest.raises(CipherError, match="truncated"):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(header), io.BytesIO())

    def test_swapped_segments_detected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import AesGcmEncryption

        first = b"a" * SEGMENT
        second = b"b" * SEGMENT
        header, segments = _segments(_encrypt_segmented(first + second + b"tail"))
        swapped = header + segments[1] + segments[0] + segments[2]

        with pytest.raises(CipherError, match="authentication failed"):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(swapped), io.BytesIO())

    def test_tampered_segment_size_detected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import HEADER_SIZE, AesGcmEncryption

        ciphertext = bytearray(_encrypt_segmented(b"u" * (2 * SEGMENT)))
        ciphertext[HEADER_SIZE - 1] ^= 0x01

        with pytest.raises(CipherError):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(bytes(ciphertext)), io.BytesIO())

    def test_segment_size_recorded_in_header(self) -> None:
        import struct

        from sluice.core.crypto import HEADER_SIZE, MAGIC

        header, _ = _segments(_encrypt_segmented(b"v" * 40))

        assert header.startswith(MAGIC)
        assert struct.unpack(">I", header[HEADER_SIZE - 4 :]) == (SEGMENT,)

    def test_default_segment_far_below_gcm_message_limit(self) -> None:
        from sluice.core.crypto import MAX_SEGMENTS, SEGMENT_SIZE

        gcm_message_limit = (2**39 - 256) // 8

        assert SEGMENT_SIZE < gcm_message_limit
        # 2**32 segments of the default size cover archives far beyond any node
        assert SEGMENT_SIZE * MAX_SEGMENTS > 2**50

    def test_decrypt_uses_segment_size_from_header(self) -> None:
        from sluice.core.crypto import AesGcmEncryption

        plaintext = b"w" * 1000
        ciphertext = _encrypt_segmented(plaintext, segment_size=64)

        recovered = io.BytesIO()
        AesGcmEncryption(KEY, segment_size=4096).decrypt(io.BytesIO(ciphertext), recovered)

        assert recovered.getvalue() == plaintext

    def test_non_positive_segment_size_rejected(self) -> None:
        from sluice.core.crypto import AesGcmEncryption

        with pytest.raises(ValueError, match="segment_size"):
            AesGcmEncryption(KEY, segment_size=0).writer(io.BytesIO())

    def test_oversized_header_segment_size_rejected(self) -> None:
        from sluice.contracts.errors import CipherError
        from sluice.core.crypto import HEADER_SIZE, AesGcmEncryption

        ciphertext = bytearray(_encrypt_segmented(b"x" * 40))
        ciphertext[HEADER_SIZE - 4 : HEADER_SIZE] = b"\xff\xff\xff\xff"

        with pytest.raises(CipherError, match="invalid segment size"):
            AesGcmEncryption(KEY).decrypt(io.BytesIO(bytes(ciphertext)), io.BytesIO())


class TestPlaintextEncryption:
    def test_passes_bytes_through(self) -> None:
        from sluice.core.crypto import PlaintextEncryption

        provider = PlaintextEncryption()
        sink = io.BytesIO()
        writer = provider.writer(sink)
        writer.write(b"abc")
        writer.finalize()

        recovered = io.BytesIO()
        provider.decrypt(io.BytesIO(sink.getvalue()), recovered)

        assert provider.suffix == ""
        assert recovered.getvalue() == b"abc"
