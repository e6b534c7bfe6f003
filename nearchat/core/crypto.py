# nearchat/core/crypto.py

import base64
import os
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from nearchat.core.errors import AuthenticationError, IdentityExpired

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
MAX_PLAINTEXT = 64 * 1024

SESSION_INFO = b"nearchat-session"


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()


def _b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode())


def associated_data(from_token: str, to_token: str) -> bytes:
    """
    Addressing bound into the tag: a re-addressed envelope fails to open.
    """
    return f"{from_token}|{to_token}".encode()


@dataclass(frozen=True)
class Envelope:
    """
    Authenticated-encrypted message body. The only thing the relay sees.
    """

    ciphertext: bytes
    nonce: bytes
    tag: bytes

    def to_wire(self) -> dict:
        return {
            "ct": _b64e(self.ciphertext),
            "nonce": _b64e(self.nonce),
            "tag": _b64e(self.tag),
        }

    @classmethod
    def from_wire(cls, data) -> "Envelope":
        try:
            envelope = cls(
                ciphertext=_b64d(data["ct"]),
                nonce=_b64d(data["nonce"]),
                tag=_b64d(data["tag"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise AuthenticationError("malformed envelope") from exc

        if len(envelope.nonce) != NONCE_SIZE or len(envelope.tag) != TAG_SIZE:
            raise AuthenticationError("malformed envelope")
        return envelope


@dataclass(frozen=True)
class SessionKey:
    """
    Symmetric key bound to a (local, peer) identity pair.
    Lives as long as the shorter-lived of the two identities.
    """

    local_token: str
    peer_token: str
    expires_at: float
    key: bytes = field(repr=False)

    def is_valid(self, at: float) -> bool:
        return at < self.expires_at


def seal(plaintext, key: bytes, aad: bytes = b"") -> Envelope:
    """
    Encrypt under a fresh random nonce. Every call draws a new nonce.
    """
    data = plaintext.encode("utf-8") if isinstance(plaintext, str) else bytes(plaintext)
    if len(data) > MAX_PLAINTEXT:
        raise ValueError(f"Plaintext too large (max {MAX_PLAINTEXT} bytes)")

    nonce = os.urandom(NONCE_SIZE)
    sealed = ChaCha20Poly1305(key).encrypt(nonce, data, aad or None)
    return Envelope(
        ciphertext=sealed[:-TAG_SIZE],
        nonce=nonce,
        tag=sealed[-TAG_SIZE:],
    )


def open_envelope(envelope: Envelope, key: bytes, aad: bytes = b"") -> bytes:
    """
    Verify and decrypt. Raises AuthenticationError instead of ever
    returning unverified bytes.
    """
    try:
        aead = ChaCha20Poly1305(key)
        return aead.decrypt(envelope.nonce, envelope.ciphertext + envelope.tag, aad or None)
    except (InvalidTag, ValueError) as exc:
        raise AuthenticationError("envelope failed to verify") from exc


class KeyAgreement:
    """
    X25519 key pair owned by a single temporary identity.

    - Fresh key pair per identity, so rotated identities are unlinkable
    - One SessionKey per peer identity
    - Keys are never sent anywhere except the public half in beacons
    """

    def __init__(self):
        self._priv = x25519.X25519PrivateKey.generate()
        self.public_key_b64 = _b64e(
            self._priv.public_key().public_bytes_raw()
        )

        # peer_token -> SessionKey
        self._sessions = {}

    # ---- handshake ----

    def register_peer(self, local, peer, peer_pub_b64: str) -> SessionKey:
        """
        Derive and store the session key for a peer identity.
        `local` and `peer` are TemporaryIdentity values.
        """
        existing = self._sessions.get(peer.token)
        if existing is not None:
            return existing

        expires_at = min(local.expires_at, peer.expires_at)

        peer_pub = x25519.X25519PublicKey.from_public_bytes(_b64d(peer_pub_b64))
        shared = self._priv.exchange(peer_pub)

        tokens = sorted((local.token, peer.token))
        key = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=SESSION_INFO + b"|" + "|".join(tokens).encode(),
        ).derive(shared)

        session = SessionKey(
            local_token=local.token,
            peer_token=peer.token,
            expires_at=expires_at,
            key=key,
        )
        self._sessions[peer.token] = session
        return session

    def session(self, peer_token: str, at: float) -> SessionKey:
        session = self._sessions.get(peer_token)
        if session is None:
            raise KeyError(peer_token)
        if not session.is_valid(at):
            del self._sessions[peer_token]
            raise IdentityExpired(f"Session with {peer_token} expired")
        return session

    def knows(self, peer_token: str) -> bool:
        return peer_token in self._sessions

    def forget(self):
        self._sessions.clear()
