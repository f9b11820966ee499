import asyncio

import pytest

from provenance.core.errors import MalformedInput, SignatureInvalid, SigningDeclined
from provenance.core.signer import (
    Ed25519Signer, InteractiveSigner, normalize_identity, recover_signer, same_identity
)


def test_seeded_signer_is_deterministic(alice):
    again = Ed25519Signer.from_seed(bytes([1]) * 32)
    assert again.identity == alice.identity
    assert normalize_identity(alice.identity) == alice.identity


def test_distinct_keys_have_distinct_identities(alice, bob):
    assert alice.identity != bob.identity


def test_recover_signer_returns_identity(alice):
    signature = asyncio.run(alice.sign(b"payload"))
    assert recover_signer(b"payload", signature) == alice.identity


def test_wrong_signer_is_not_a_bad_signature(alice, bob):
    # A valid signature by someone else recovers to their identity
    signature = asyncio.run(bob.sign(b"payload"))
    recovered = recover_signer(b"payload", signature)
    assert recovered == bob.identity
    assert not same_identity(recovered, alice.identity)


def test_modified_payload_fails_recovery(alice):
    signature = asyncio.run(alice.sign(b"payload"))
    with pytest.raises(SignatureInvalid):
        recover_signer(b"payload!", signature)


@pytest.mark.parametrize("signature", ["deadbeef", "0xnothex", "0x" + "ab" * 10, None])
def test_malformed_signatures_are_rejected(signature):
    with pytest.raises(SignatureInvalid):
        recover_signer(b"payload", signature)


def test_pem_round_trip(tmp_path, alice):
    key_path = tmp_path / "signer.pem"
    key_path.write_bytes(alice.to_pem())
    assert Ed25519Signer.from_pem_file(key_path).identity == alice.identity


def test_interactive_signer_declines(alice):
    async def refuse(payload):
        return False

    signer = InteractiveSigner(alice, refuse)
    assert signer.identity == alice.identity
    with pytest.raises(SigningDeclined):
        asyncio.run(signer.sign(b"payload"))


def test_interactive_signer_approves(alice):
    seen = []

    async def approve(payload):
        seen.append(payload)
        return True

    signature = asyncio.run(InteractiveSigner(alice, approve).sign(b"payload"))
    assert seen == [b"payload"]
    assert recover_signer(b"payload", signature) == alice.identity


def test_normalize_identity():
    assert normalize_identity("0x" + "AB" * 20) == "0x" + "ab" * 20
    with pytest.raises(MalformedInput):
        normalize_identity("0x1234")
    assert not same_identity(None, "0x" + "ab" * 20)
