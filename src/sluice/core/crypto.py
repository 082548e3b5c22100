"""Streaming symmetric encryption of archive streams.

Artifact layout (AesGcmEncryption):

    MAGIC (5) | salt (16) | nonce prefix (8) | segment size (4) | segment...

Each segment is ``segment_size`` plaintext bytes sealed with AES-256-GCM
(ciphertext followed by a 16-byte tag); only the final segment may be
shorter, and it may be empty. Segment ``i`` uses the nonce
``prefix || i`` (32-bit big-endian counter) and authenticates the header plus
a final-segment flag as associated data, so reordered, dropped or truncated
segments fail authentication. Sealing in segments keeps every nonce far below
the GCM per-message length limit regardless of archive size.

The 256-bit key is derived from the configured passphrase with scrypt and
a random per-artifact salt. The plaintext archive is never written to disk:
bytes are encrypted as tarfile produces them.
"""

from __future__ import annotations

import os
import struct
from typing import BinaryIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import SecretStr

from sluice.contracts.errors import CipherError

MAGIC = b"SLCE1"
SALT_SIZE = 16
NONCE_PREFIX_SIZE = 8
TAG_SIZE = 16
_SEGMENT_SIZE_FORMAT = struct.Struct(">I")
_COUNTER_FORMAT = struct.Struct(">I")
HEADER_SIZE = len(MAGIC) + SALT_SIZE + NONCE_PREFIX_SIZE + _SEGMENT_SIZE_FORMAT.size

SEGMENT_SIZE = 4 * 1024 * 1024
MAX_SEGMENT_SIZE = 64 * 1024 * 1024
MAX_SEGMENTS = 2**32
CHUNK_SIZE = 1024 * 1024

_FINAL = b"\x01"
_NOT_FINAL = b"\x00"

# scrypt cost parameters (RFC 7914 interactive-login recommendation)
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


def derive_key(passphrase: SecretStr, salt: bytes) -> bytes:
    """Derive a 32-byte AES key from a passphrase and salt."""
    kdf = Scrypt(salt=salt, length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.get_secret_value().encode("utf-8"))


def _segment_nonce(prefix: bytes, counter: int) -> bytes:
    if counter >= MAX_SEGMENTS:
        raise CipherError("too many segments for one artifact")
    return prefix + _COUNTER_FORMAT.pack(counter)


class AesGcmWriter:
    """Write-only stream encrypting into ``sink`` in AES-256-GCM segments.

    Plaintext is buffered until a full segment is available. A full segment
    is only sealed once more data follows it, so ``finalize()`` always has a
    (possibly empty) final segment to seal. Writing after finalize raises
    CipherError.
    """

    def __init__(self, sink: BinaryIO, key: bytes, salt: bytes, segment_size: int = SEGMENT_SIZE) -> None:
        if not 0 < segment_size <= MAX_SEGMENT_SIZE:
            raise ValueError(f"segment_size must be between 1 and {MAX_SEGMENT_SIZE}")
        self._sink = sink
        self._aead = AESGCM(key)
        self._prefix = os.urandom(NONCE_PREFIX_SIZE)
        self._header = MAGIC + salt + self._prefix + _SEGMENT_SIZE_FORMAT.pack(segment_size)
        self._segment_size = segment_size
        self._buffer = bytearray()
        self._counter = 0
        self._finalized = False
        self._sink.write(self._header)

    def write(self, data: bytes) -> int:
        if self._finalized:
            raise CipherError("write after finalize")
        self._buffer += data
        while len(self._buffer) > self._segment_size:
            self._seal(bytes(self._buffer[: self._segment_size]), final=False)
            del self._buffer[: self._segment_size]
        return len(data)

    def finalize(self) -> None:
        if self._finalized:
            raise CipherError("writer already finalized")
        self._finalized = True
        self._seal(bytes(self._buffer), final=True)
        self._buffer.clear()

    def _seal(self, segment: bytes, *, final: bool) -> None:
        nonce = _segment_nonce(self._prefix, self._counter)
        try:
            sealed = self._aead.encrypt(nonce, segment, self._header + (_FINAL if final else _NOT_FINAL))
        except Exception as e:
            raise CipherError(f"encryption failed: {e}") from e
        self._counter += 1
        self._sink.write(sealed)


class AesGcmEncryption:
    """Passphrase-based AES-256-GCM encryption provider.

    The passphrase stays wrapped in SecretStr and is only unwrapped inside
    key derivation.
    """

    suffix = ".enc"

    def __init__(self, passphrase: SecretStr, *, segment_size: int = SEGMENT_SIZE) -> None:
        if not passphrase.get_secret_value():
            raise ValueError("encryption passphrase must not be empty")
        self._passphrase = passphrase
        self._segment_size = segment_size

    def writer(self, sink: BinaryIO) -> AesGcmWriter:
        salt = os.urandom(SALT_SIZE)
        return AesGcmWriter(sink, derive_key(self._passphrase, salt), salt, self._segment_size)

    def decrypt(self, source: BinaryIO, sink: BinaryIO) -> None:
        """Stream-decrypt ``source`` into ``sink`` one segment at a time.

        The segment size is read from the artifact header. Output written
        before an authentication failure must be discarded by the caller.

        Raises:
            CipherError: Bad header, truncated input, or authentication failure.
        """
        header = source.read(HEADER_SIZE)
        if len(header) < HEADER_SIZE:
            raise CipherError("encrypted artifact is too small to contain a header")
        if not header.startswith(MAGIC):
            raise CipherError("not a sluice encrypted artifact (bad magic)")
        salt = header[len(MAGIC) : len(MAGIC) + SALT_SIZE]
        prefix = header[len(MAGIC) + SALT_SIZE : len(MAGIC) + SALT_SIZE + NONCE_PREFIX_SIZE]
        (segment_size,) = _SEGMENT_SIZE_FORMAT.unpack(header[-_SEGMENT_SIZE_FORMAT.size :])
        if not 0 < segment_size <= MAX_SEGMENT_SIZE:
            raise CipherError(f"encrypted artifact header declares an invalid segment size: {segment_size}")

        aead = AESGCM(derive_key(self._passphrase, salt))
        sealed_size = segment_size + TAG_SIZE
        counter = 0
        current = source.read(sealed_size)
        if len(current) < TAG_SIZE:
            raise CipherError("encrypted artifact truncated")
        while True:
            following = source.read(sealed_size)
            final = not following
            if len(current) < sealed_size and not final:
                raise CipherError("encrypted artifact truncated")
            try:
                plaintext = aead.decrypt(
                    _segment_nonce(prefix, counter),
                    current,
                    header + (_FINAL if final else _NOT_FINAL),
                )
            except InvalidTag as e:
                raise CipherError("authentication failed: wrong key or corrupted artifact") from e
            sink.write(plaintext)
            if final:
                return
            if len(following) < TAG_SIZE:
                raise CipherError("encrypted artifact truncated")
            current = following
            counter += 1


class PlaintextWriter:
    """Pass-through writer used when encryption is disabled."""

    def __init__(self, sink: BinaryIO) -> None:
        self._sink = sink

    def write(self, data: bytes) -> int:
        self._sink.write(data)
        return len(data)

    def finalize(self) -> None:
        return None


class PlaintextEncryption:
    """No-op provider; archives are stored as plain tar."""

    suffix = ""

    def writer(self, sink: BinaryIO) -> PlaintextWriter:
        return PlaintextWriter(sink)

    def decrypt(self, source: BinaryIO, sink: BinaryIO) -> None:
        while chunk := source.read(CHUNK_SIZE):
            sink.write(chunk)
