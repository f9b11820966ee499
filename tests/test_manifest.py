import asyncio
import json
from datetime import datetime, timezone

import pytest

from provenance.core.errors import ManifestError, SignatureInvalid, SigningDeclined
from provenance.core.fingerprint import fingerprint
from provenance.core.signer import InteractiveSigner, recover_signer
from provenance.models.manifest import SignedManifest, UnsignedManifest
from provenance.services.manifest import (
    build_manifest, canonical_bytes, parse_manifest, serialize_manifest, sign_manifest
)

CREATED = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
FP = fingerprint(b"artwork")


def test_build_manifest_fields(alice):
    manifest = build_manifest(FP, alice.identity, metadata={"title": "Sunrise"}, created_at=CREATED)
    assert manifest.version == "1.0"
    assert manifest.algorithm == "sha256"
    assert manifest.content_hash == FP
    assert manifest.creator == alice.identity
    assert manifest.created_at == "2025-01-02T03:04:05Z"
    assert manifest.content_uri is None


def test_canonical_bytes_sorted_and_compact(alice):
    manifest = build_manifest(FP, alice.identity, metadata={"b": 1, "a": [1, "x"]}, created_at=CREATED)
    raw = canonical_bytes(manifest)
    document = json.loads(raw)
    assert list(document) == sorted(document)
    assert b" " not in raw
    assert "content_uri" not in document
    assert "signature" not in document


def test_canonical_bytes_ignore_metadata_insertion_order(alice):
    first = build_manifest(FP, alice.identity, metadata={"b": 1, "a": 2}, created_at=CREATED)
    second = build_manifest(FP, alice.identity, metadata={"a": 2, "b": 1}, created_at=CREATED)
    assert canonical_bytes(first) == canonical_bytes(second)


def test_content_uri_is_signed_when_present(alice):
    manifest = build_manifest(FP, alice.identity, content_locator="cas://sha256/" + FP[2:],
                              created_at=CREATED)
    assert json.loads(canonical_bytes(manifest))["content_uri"] == "cas://sha256/" + FP[2:]


def test_float_metadata_is_rejected(alice):
    with pytest.raises(ManifestError):
        build_manifest(FP, alice.identity, metadata={"rating": 4.5})


def test_signed_manifest_recovers_to_creator(alice):
    manifest = build_manifest(FP, alice.identity, metadata={"title": "Sunrise"})
    signed = asyncio.run(sign_manifest(manifest, alice))
    assert canonical_bytes(signed) == canonical_bytes(manifest)
    assert recover_signer(canonical_bytes(signed), signed.signature) == alice.identity


def test_serialize_parse_preserves_signed_bytes(alice):
    signed = asyncio.run(sign_manifest(build_manifest(FP, alice.identity, metadata={"tags": ["a"]}), alice))
    parsed = parse_manifest(serialize_manifest(signed))
    assert parsed == signed
    assert canonical_bytes(parsed) == canonical_bytes(signed)


def test_tampered_manifest_fails_recovery(alice):
    signed = asyncio.run(sign_manifest(build_manifest(FP, alice.identity, metadata={"title": "A"}), alice))
    document = json.loads(serialize_manifest(signed))
    document["metadata"]["title"] = "B"
    tampered = parse_manifest(json.dumps(document).encode())
    with pytest.raises(SignatureInvalid):
        recover_signer(canonical_bytes(tampered), tampered.signature)


def test_declined_signing_propagates(alice):
    async def refuse(payload):
        return False

    manifest = build_manifest(FP, alice.identity)
    with pytest.raises(SigningDeclined):
        asyncio.run(sign_manifest(manifest, InteractiveSigner(alice, refuse)))


def test_signer_must_be_creator(alice, bob):
    manifest = build_manifest(FP, alice.identity)
    with pytest.raises(ManifestError):
        asyncio.run(sign_manifest(manifest, bob))


@pytest.mark.parametrize("data", [b"not json", b"[1, 2]", b'{"content_hash": "0x00"}', b"\xff\xfe"])
def test_parse_manifest_rejects_malformed(data):
    with pytest.raises(ManifestError):
        parse_manifest(data)


@pytest.mark.parametrize("field", ["content_hash", "creator"])
def test_parse_manifest_rejects_non_canonical_claim_fields(alice, field):
    fields = dict(content_hash=FP, creator=alice.identity, created_at="2025-01-02T03:04:05Z")
    fields[field] = "0x" + fields[field][2:].upper()
    unsigned = UnsignedManifest(**fields)
    signed = SignedManifest(**unsigned.claim_fields(),
                            signature=asyncio.run(alice.sign(canonical_bytes(unsigned))))
    with pytest.raises(ManifestError):
        parse_manifest(serialize_manifest(signed))
