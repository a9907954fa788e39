from __future__ import annotations

import hashlib
import hmac

from safeharbor.core.config import SESSION_HASH_MODES


def salted_hash(secret_salt: bytes, value: str, *, mode: str = "salted_sha512") -> bytes:
    # SHA-512 over salt||value matches tokens minted by earlier deployments;
    # hmac_sha512 is the keyed alternative with the same digest length.
    if mode not in SESSION_HASH_MODES:
        raise ValueError(f"Unsupported session hash mode: {mode}")
    data = value.encode("utf-8")
    if mode == "hmac_sha512":
        return hmac.new(secret_salt, data, hashlib.sha512).digest()
    digest = hashlib.sha512()
    digest.update(secret_salt)
    digest.update(data)
    return digest.digest()


def hash_password(secret_salt: bytes, password: str, *, mode: str = "salted_sha512") -> str:
    # Store only the hex digest; the clear text never reaches the object store.
    return salted_hash(secret_salt, password, mode=mode).hex()


def verify_password(secret_salt: bytes, password: str, stored_hash: str, *, mode: str = "salted_sha512") -> bool:
    if not stored_hash:
        return False
    candidate = hash_password(secret_salt, password, mode=mode)
    return hmac.compare_digest(candidate, stored_hash)


def compute_file_signature(path: str, *, chunk_size: int = 100_000) -> str:
    # Unsalted so third parties can reproduce the signature from the file.
    digest = hashlib.sha512()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()
