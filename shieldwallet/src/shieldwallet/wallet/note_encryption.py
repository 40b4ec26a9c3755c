"""
Note encryption and trial decryption.

Sender: pick an ephemeral X25519 key, agree a shared secret with the
recipient's transmission key pk_d and encrypt the note plaintext with
ChaCha20-Poly1305 under an HKDF-derived key.

Recipient: agree the same secret from its incoming viewing key and the
output's ephemeral key. A failing AEAD tag means the output is not ours.
A successful decryption is only accepted if the plaintext reproduces the
output's note commitment.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from shieldcore.models import ShieldedPool

from shieldwallet.errors import MemoTooLongError
from shieldwallet.wallet.keys import DIVERSIFIER_LENGTH, PoolViewingKey

NOTE_LEAD_BYTE = 0x02
NOTE_PLAINTEXT_SIZE = 1 + DIVERSIFIER_LENGTH + 8 + 32
MEMO_SIZE = 512
MAX_MEMO_TEXT = MEMO_SIZE - 1
TEXT_MEMO_MARKER = 0xF4
NO_MEMO = bytes([0xF6]) + bytes(MEMO_SIZE - 1)
_NONCE = bytes(12)
_MEMO_NONCE = b"\x01" + bytes(11)


@dataclass(frozen=True)
class EncryptedNote:
    pool: ShieldedPool
    cmu: bytes
    epk: bytes
    ciphertext: bytes
    memo_ciphertext: bytes = b""


@dataclass(frozen=True)
class DecryptedNote:
    pool: ShieldedPool
    diversifier: bytes
    value: int
    rseed: bytes


def note_commitment(
    pool: ShieldedPool, diversifier: bytes, pk_d: bytes, value: int, rseed: bytes
) -> bytes:
    return hashlib.blake2b(
        diversifier + pk_d + value.to_bytes(8, "little") + rseed,
        digest_size=32,
        person=b"Zcash_NoteCm" + bytes([pool.tag]) * 4,
    ).digest()


def _note_key(shared_secret: bytes, epk: bytes, pool: ShieldedPool) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=b"Zcash_ShieldedKDF" + bytes([pool.tag]),
    ).derive(shared_secret + epk)


def encrypt_note(
    pool: ShieldedPool,
    diversifier: bytes,
    pk_d: bytes,
    value: int,
    rseed: bytes | None = None,
    memo: bytes | None = None,
) -> EncryptedNote:
    """Create the output of a note paying ``value`` to (diversifier, pk_d)."""
    memo = memo if memo is not None else NO_MEMO
    if len(memo) != MEMO_SIZE:
        raise ValueError(f"Memo field must be {MEMO_SIZE} bytes")
    if value < 0 or value >= 2**63:
        raise ValueError(f"Note value out of range: {value}")
    rseed = rseed if rseed is not None else os.urandom(32)

    esk = X25519PrivateKey.generate()
    epk = esk.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )
    shared = esk.exchange(X25519PublicKey.from_public_bytes(pk_d))

    plaintext = bytes([NOTE_LEAD_BYTE]) + diversifier + value.to_bytes(8, "little") + rseed
    cipher = ChaCha20Poly1305(_note_key(shared, epk, pool))
    ciphertext = cipher.encrypt(_NONCE, plaintext, None)

    return EncryptedNote(
        pool=pool,
        cmu=note_commitment(pool, diversifier, pk_d, value, rseed),
        epk=epk,
        ciphertext=ciphertext,
        memo_ciphertext=cipher.encrypt(_MEMO_NONCE, memo, None),
    )


def try_decrypt_note(
    vk: PoolViewingKey, cmu: bytes, epk: bytes, ciphertext: bytes
) -> DecryptedNote | None:
    """Trial-decrypt one output with the pool's incoming viewing key."""
    try:
        shared = vk.incoming_key().exchange(X25519PublicKey.from_public_bytes(epk))
        plaintext = ChaCha20Poly1305(_note_key(shared, epk, vk.pool)).decrypt(
            _NONCE, ciphertext, None
        )
    except (InvalidTag, ValueError):
        return None

    if len(plaintext) != NOTE_PLAINTEXT_SIZE or plaintext[0] != NOTE_LEAD_BYTE:
        return None

    diversifier = plaintext[1 : 1 + DIVERSIFIER_LENGTH]
    value = int.from_bytes(plaintext[1 + DIVERSIFIER_LENGTH : 9 + DIVERSIFIER_LENGTH], "little")
    rseed = plaintext[9 + DIVERSIFIER_LENGTH :]

    if note_commitment(vk.pool, diversifier, vk.pk_d, value, rseed) != cmu:
        return None

    return DecryptedNote(pool=vk.pool, diversifier=diversifier, value=value, rseed=rseed)


def encode_memo(text: str | None) -> bytes | None:
    """
    Encode a text memo into the 512-byte memo field.

    Raises:
        MemoTooLongError: If the UTF-8 text exceeds 511 bytes
    """
    if text is None:
        return None
    raw = text.encode("utf-8")
    if len(raw) > MAX_MEMO_TEXT:
        raise MemoTooLongError(f"Memo too long (max {MAX_MEMO_TEXT} bytes, got {len(raw)})")
    return bytes([TEXT_MEMO_MARKER]) + raw + bytes(MAX_MEMO_TEXT - len(raw))

