"""Evidence signing for ledger entries.

Signatures are proofs only: they let an auditor check that an entry was
written by the holder of the custody key. They grant nothing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_pem_private_key


class EvidenceSigner:
    def __init__(self, private_key: Optional[ec.EllipticCurvePrivateKey] = None) -> None:
        self.private_key = private_key or ec.generate_private_key(ec.SECP384R1())
        self.public_key = self.private_key.public_key()
        self.public_key_pem = self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()

    @classmethod
    def from_path(cls, key_path: str | Path) -> "EvidenceSigner":
        """Load a PEM key; a missing file is a configuration error."""
        p = Path(key_path)
        if not p.is_file():
            raise ValueError(f"signing key not found: {p} (create one with `init --new-key`)")
        with p.open("rb") as f:
            return cls(load_pem_private_key(f.read(), password=None))

    def write_key(self, key_path: str | Path) -> Path:
        p = Path(key_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(
            self.private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        return p

    def sign(self, entry_hash: str) -> str:
        return self.private_key.sign(entry_hash.encode("utf-8"), ec.ECDSA(hashes.SHA256())).hex()

    def verify(self, entry_hash: str, proof: str) -> bool:
        try:
            self.public_key.verify(bytes.fromhex(proof), entry_hash.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
            return True
        except (InvalidSignature, ValueError):
            return False
