import pytest

from paillier_client.crypto.paillier import PublicKey
from paillier_client.main import MAX_PLAINTEXTS, app, get_encryption_service
from paillier_client.service import EncryptionService


@pytest.mark.anyio
async def test_health_returns_ok(client):
    response = await client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["keystore"] == "ok"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.anyio
async def test_generate_list_get_delete(client):
    resp = await client.post("/keys/generate", json={"name": "alice", "bits": 512})
    assert resp.status_code == 201, "POST /keys/generate should return 201"
    body = resp.json()
    key_id = body["key_id"]
    assert int(body["g"], 16) == int(body["n"], 16) + 1

    listing = (await client.get("/keys")).json()
    assert [k["id"] for k in listing] == [key_id]

    record = (await client.get(f"/keys/{key_id}")).json()
    assert record["name"] == "alice"
    assert record["public_key"]["n"] == body["n"]

    resp = await client.delete(f"/keys/{key_id}")
    assert resp.status_code == 200
    assert (await client.get(f"/keys/{key_id}")).status_code == 404
    assert (await client.delete(f"/keys/{key_id}")).status_code == 200


@pytest.mark.anyio
@pytest.mark.parametrize("bits", [513, 256, 0])
async def test_generate_rejects_bad_bit_length(client, bits):
    resp = await client.post("/keys/generate", json={"name": "bad", "bits": bits})
    assert resp.status_code == 400
    assert (await client.get("/keys")).json() == []


@pytest.mark.anyio
async def test_import_rejects_unit_modulus(client):
    resp = await client.post("/keys/import", json={"name": "deg", "n": "1", "g": "2"})
    assert resp.status_code == 400
    assert (await client.get("/keys")).json() == []


@pytest.mark.anyio
async def test_encrypt_request_size_is_bounded(client, keypair):
    pub = keypair.public_key
    key_id = (
        await client.post("/keys/import", json={"name": "big", "n": format(pub.n, "x"), "g": format(pub.g, "x")})
    ).json()["key_id"]

    resp = await client.post(f"/keys/{key_id}/encrypt", json={"plaintexts": [1] * (MAX_PLAINTEXTS + 1)})
    assert resp.status_code == 422


@pytest.mark.anyio
async def test_import_and_export(client, keypair):
    pub = keypair.public_key
    resp = await client.post("/keys/import", json={"name": "bob", "n": format(pub.n, "x"), "g": format(pub.g, "x")})
    assert resp.status_code == 201
    key_id = resp.json()["key_id"]

    exported = await client.get(f"/keys/{key_id}/export")
    assert exported.status_code == 200
    assert exported.json()["publicKey"]["n"] == format(pub.n, "x")

    assert (await client.get("/keys/unknown/export")).status_code == 404


@pytest.mark.anyio
async def test_import_rejects_bad_hex(client):
    resp = await client.post("/keys/import", json={"name": "bad", "n": "zz", "g": "1"})
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_encrypt_with_stored_key(client, keypair, decrypt):
    pub = keypair.public_key
    key_id = (
        await client.post("/keys/import", json={"name": "enc", "n": format(pub.n, "x"), "g": format(pub.g, "x")})
    ).json()["key_id"]

    resp = await client.post(f"/keys/{key_id}/encrypt", json={"plaintexts": [42, 7]})
    assert resp.status_code == 200
    body = resp.json()
    ciphertexts = [int(c, 16) for c in body["ciphertexts"]]
    assert [decrypt(keypair, c) for c in ciphertexts] == [42, 7]
    assert PublicKey(n=int(body["n"], 16), g=int(body["g"], 16)) == pub

    out_of_range = await client.post(f"/keys/{key_id}/encrypt", json={"plaintexts": [pub.n]})
    assert out_of_range.status_code == 400

    missing = await client.post("/keys/unknown/encrypt", json={"plaintexts": [1]})
    assert missing.status_code == 404


class RecordingEncryptionService(EncryptionService):
    def __init__(self, key_store):
        super().__init__(key_store)
        self.batches = []

    async def encrypt_tokens(self, tokens, public_key, on_progress=None, batch_size=10):
        self.batches.append(list(tokens))
        return await super().encrypt_tokens(tokens, public_key, on_progress, batch_size)


@pytest.mark.anyio
async def test_encrypt_goes_through_encryption_service(client, key_store, keypair, decrypt):
    service = RecordingEncryptionService(key_store)
    app.dependency_overrides[get_encryption_service] = lambda: service
    key_id = await key_store.store_key("svc", keypair.public_key)

    resp = await client.post(f"/keys/{key_id}/encrypt", json={"plaintexts": [3, 1, 4]})

    assert resp.status_code == 200
    assert service.batches == [[3, 1, 4]]
    assert [decrypt(keypair, int(c, 16)) for c in resp.json()["ciphertexts"]] == [3, 1, 4]
