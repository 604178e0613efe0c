"""High-level service tying token encryption to the key store."""

import base64
import time
from typing import Callable, Optional, Sequence

import anyio
from pydantic import BaseModel, Field

from paillier_client.crypto.paillier import PaillierEncryption, PublicKey, int_to_bytes, parse_public_key
from paillier_client.keystore import KeyStore, StoredKeyRecord

LEDGER_TOKEN_WIDTH = 32


class EncryptedToken(BaseModel):
    value: str  # base64 of the big-endian ciphertext
    index: int


class DocumentPublicKey(BaseModel):
    n: str
    g: str


class DocumentMetadata(BaseModel):
    token_count: int
    original_length: int = 0
    timestamp: int
    public_key: DocumentPublicKey


class EncryptedDocument(BaseModel):
    id: str
    encrypted_tokens: list[EncryptedToken] = Field(default_factory=list)
    metadata: DocumentMetadata


class EncryptionService:
    def __init__(self, key_store: Optional[KeyStore] = None, deterministic: Optional[bool] = None):
        self.key_store = key_store or KeyStore()
        self.deterministic = deterministic

    async def init(self) -> None:
        await self.key_store.init()

    def _engine(self, public_key: PublicKey) -> PaillierEncryption:
        if self.deterministic is None:
            return PaillierEncryption(public_key)
        return PaillierEncryption(public_key, deterministic=self.deterministic)

    async def encrypt_tokens(
        self,
        tokens: Sequence[int],
        public_key: PublicKey,
        on_progress: Optional[Callable[[int], None]] = None,
        batch_size: int = 10,
    ) -> list[EncryptedToken]:
        """Encrypt tokens in batches, yielding to the event loop between batches."""
        paillier = self._engine(public_key)
        encrypted: list[EncryptedToken] = []
        total = len(tokens)

        for start in range(0, total, batch_size):
            batch = tokens[start:start + batch_size]
            for offset, token in enumerate(batch):
                ciphertext = paillier.encrypt(int(token))
                encrypted.append(
                    EncryptedToken(
                        value=base64.b64encode(int_to_bytes(ciphertext)).decode(),
                        index=start + offset,
                    )
                )
            if on_progress is not None:
                on_progress(min(100, round((start + len(batch)) * 100 / total)))
            await anyio.sleep(0)

        return encrypted

    async def create_encrypted_document(
        self,
        doc_id: str,
        tokens: Sequence[int],
        public_key: PublicKey,
        on_progress: Optional[Callable[[int], None]] = None,
        original_length: int = 0,
    ) -> EncryptedDocument:
        encrypted_tokens = await self.encrypt_tokens(tokens, public_key, on_progress)
        return EncryptedDocument(
            id=doc_id,
            encrypted_tokens=encrypted_tokens,
            metadata=DocumentMetadata(
                token_count=len(tokens),
                original_length=original_length,
                timestamp=int(time.time() * 1000),
                public_key=DocumentPublicKey(n=str(public_key.n), g=str(public_key.g)),
            ),
        )

    @staticmethod
    def prepare_tokens_for_ledger(tokens: Sequence[int]) -> list[bytes]:
        """Plain token ids as 32-byte frames: 4 little-endian bytes, zero padded."""
        return [
            (int(token) & 0xFFFFFFFF).to_bytes(4, "little").ljust(LEDGER_TOKEN_WIDTH, b"\x00")
            for token in tokens
        ]

    @staticmethod
    def encrypted_tokens_to_ledger_format(encrypted_tokens: Sequence[EncryptedToken]) -> list[bytes]:
        return [base64.b64decode(token.value) for token in encrypted_tokens]

    async def store_public_key(self, name: str, public_key: PublicKey) -> str:
        return await self.key_store.store_key(name, public_key)

    async def get_stored_keys(self) -> list[StoredKeyRecord]:
        return await self.key_store.get_all_keys()

    async def get_public_key(self, key_id: str) -> Optional[PublicKey]:
        stored = await self.key_store.get_key(key_id)
        if stored is None:
            return None
        return stored.to_public_key()

    async def import_public_key_from_ledger(self, name: str, n_bytes: bytes, g_bytes: bytes) -> str:
        return await self.store_public_key(name, parse_public_key(n_bytes, g_bytes))
