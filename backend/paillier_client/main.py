from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from paillier_client.crypto.keygen import (
    DEFAULT_KEY_BITS,
    export_public_key,
    generate_keypair_async,
)
from paillier_client.crypto.paillier import public_key_to_bytes
from paillier_client.errors import KeyValidationError, StorageError, StorageUnavailableError
from paillier_client.keystore import KeyStore
from paillier_client.logger import setup_logging
from paillier_client.service import EncryptionService

MAX_PLAINTEXTS = 1024


@lru_cache
def get_key_store() -> KeyStore:
    return KeyStore()


def get_encryption_service(store: KeyStore = Depends(get_key_store)) -> EncryptionService:
    return EncryptionService(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield
    await get_key_store().close()


app = FastAPI(
    title="Paillier Key Service",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Security: CORS ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=False,
)


# ── Security: HTTP headers ───────────────────────────────────
@app.middleware("http")
async def security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Cache-Control"] = "no-store"
    return response


# ── Error mapping ────────────────────────────────────────────
@app.exception_handler(KeyValidationError)
async def validation_error_handler(request: Request, exc: KeyValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    code = 503 if isinstance(exc, StorageUnavailableError) else 500
    return JSONResponse(status_code=code, content={"detail": str(exc)})


class GenerateKeyRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    bits: int = Field(default=DEFAULT_KEY_BITS, le=4096)


class ImportKeyRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    n: str = Field(min_length=1)
    g: str = Field(min_length=1)


class EncryptRequest(BaseModel):
    plaintexts: list[int] = Field(min_length=1, max_length=MAX_PLAINTEXTS)


@app.get("/health")
async def health(store: KeyStore = Depends(get_key_store)) -> dict:
    """Liveness probe that also opens the key store."""
    try:
        await store.init()
    except StorageUnavailableError as exc:
        raise HTTPException(status_code=503, detail="key store unavailable") from exc
    return {"status": "ok", "keystore": "ok"}


# ── Key endpoints ────────────────────────────────────────────

@app.post("/keys/generate", status_code=status.HTTP_201_CREATED)
async def generate_key(payload: GenerateKeyRequest, store: KeyStore = Depends(get_key_store)):
    """Generate a key pair and keep only its public half."""
    pair = await generate_keypair_async(payload.bits)
    key_id = await store.store_key(payload.name, pair.public_key)
    return {"status": "created", "key_id": key_id, "name": payload.name, **export_public_key(pair.public_key)}


@app.post("/keys/import", status_code=status.HTTP_201_CREATED)
async def import_key(payload: ImportKeyRequest, store: KeyStore = Depends(get_key_store)):
    """Import a public key given as hex strings."""
    key_id = await store.import_key(payload.name, payload.n, payload.g)
    return {"status": "created", "key_id": key_id, "name": payload.name}


@app.get("/keys")
async def list_keys(store: KeyStore = Depends(get_key_store)):
    records = await store.get_all_keys()
    return [r.model_dump(mode="json") for r in records]


@app.get("/keys/{key_id}")
async def get_key(key_id: str, store: KeyStore = Depends(get_key_store)):
    record = await store.get_key(key_id)
    if record is None:
        raise HTTPException(status_code=404, detail="key not found")
    return record.model_dump(mode="json")


@app.get("/keys/{key_id}/export")
async def export_key(key_id: str, store: KeyStore = Depends(get_key_store)):
    exported = await store.export_key(key_id)
    if exported is None:
        raise HTTPException(status_code=404, detail="key not found")
    return Response(content=exported, media_type="application/json")


@app.delete("/keys/{key_id}")
async def delete_key(key_id: str, store: KeyStore = Depends(get_key_store)):
    """Delete a key by ID (idempotent)."""
    await store.delete_key(key_id)
    return {"status": "deleted", "key_id": key_id}


# ── Encryption endpoint ──────────────────────────────────────

@app.post("/keys/{key_id}/encrypt")
async def encrypt_with_key(
    key_id: str,
    payload: EncryptRequest,
    service: EncryptionService = Depends(get_encryption_service),
):
    """Encrypt plaintexts with a stored key; ciphertexts are big-endian hex."""
    pub = await service.get_public_key(key_id)
    if pub is None:
        raise HTTPException(status_code=404, detail="key not found")
    encrypted = await service.encrypt_tokens(payload.plaintexts, pub)
    n_bytes, g_bytes = public_key_to_bytes(pub)
    return {
        "key_id": key_id,
        "n": n_bytes.hex(),
        "g": g_bytes.hex(),
        "ciphertexts": [c.hex() for c in service.encrypted_tokens_to_ledger_format(encrypted)],
    }
