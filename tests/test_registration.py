import asyncio

import pytest

from provenance.core.errors import RegistryConflict, SigningDeclined, UnknownNetwork
from provenance.core.fingerprint import fingerprint
from provenance.core.signer import InteractiveSigner
from provenance.models.verification import RegistrationResult
from provenance.services.manifest import parse_manifest

from conftest import NETWORK, OTHER_NETWORK

ARTWORK = b"original artwork bytes"


def test_register_anchors_signed_manifest(registration, registry, blob_store, alice):
    async def scenario():
        result = await registration.register(ARTWORK, alice, NETWORK, metadata={"title": "Sunrise"})
        manifest = parse_manifest(await blob_store.get(result.manifest_locator))
        return result, manifest, await registry.read(result.fingerprint, NETWORK)

    result, manifest, lookup = asyncio.run(scenario())
    assert result.fingerprint == fingerprint(ARTWORK)
    assert result.claimant == alice.identity
    assert result.receipt is not None and not result.already_registered
    assert result.entry.manifest_locator == result.manifest_locator
    assert manifest.content_hash == result.fingerprint
    assert manifest.creator == alice.identity
    assert manifest.metadata == {"title": "Sunrise"}
    assert lookup.entry.claimant == alice.identity


def test_privacy_mode_does_not_upload_content(registration, blob_store, alice):
    result = asyncio.run(registration.register(ARTWORK, alice, NETWORK))
    assert result.content_locator is None
    assert len(blob_store) == 1  # the manifest only


def test_upload_content_records_content_uri(registration, blob_store, alice):
    async def scenario():
        result = await registration.register(ARTWORK, alice, NETWORK, upload_content=True)
        manifest = parse_manifest(await blob_store.get(result.manifest_locator))
        return result, manifest, await blob_store.get(result.content_locator)

    result, manifest, content = asyncio.run(scenario())
    assert content == ARTWORK
    assert manifest.content_uri == result.content_locator


def test_reregistration_by_same_claimant_is_a_no_op(registration, blob_store, alice):
    async def scenario():
        first = await registration.register(ARTWORK, alice, NETWORK)
        blobs_after_first = len(blob_store)
        second = await registration.register(ARTWORK, alice, NETWORK)
        return first, second, blobs_after_first

    first, second, blobs_after_first = asyncio.run(scenario())
    assert second.already_registered
    assert second.receipt is None
    assert second.manifest_locator == first.manifest_locator
    assert len(blob_store) == blobs_after_first


def test_registration_by_another_claimant_conflicts(registration, alice, bob):
    async def scenario():
        await registration.register(ARTWORK, alice, NETWORK)
        await registration.register(ARTWORK, bob, NETWORK)

    with pytest.raises(RegistryConflict) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.existing_claimant == alice.identity
    assert excinfo.value.attempted_claimant == bob.identity
    assert excinfo.value.network == NETWORK


def test_concurrent_registrations_one_wins(registration, registry, alice, bob):
    async def scenario():
        results = await asyncio.gather(
            registration.register(ARTWORK, alice, NETWORK),
            registration.register(ARTWORK, bob, NETWORK),
            return_exceptions=True,
        )
        return results, await registry.read(fingerprint(ARTWORK), NETWORK)

    results, lookup = asyncio.run(scenario())
    successes = [r for r in results if isinstance(r, RegistrationResult)]
    conflicts = [r for r in results if isinstance(r, RegistryConflict)]
    assert len(successes) == 1 and len(conflicts) == 1
    assert len(lookup.entries) == 1
    assert lookup.entry.claimant == successes[0].claimant
    assert {conflicts[0].existing_claimant, conflicts[0].attempted_claimant} == {
        alice.identity, bob.identity
    }


def test_same_content_on_two_networks(registration, alice, bob):
    async def scenario():
        first = await registration.register(ARTWORK, alice, NETWORK)
        second = await registration.register(ARTWORK, bob, OTHER_NETWORK)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.network == NETWORK and second.network == OTHER_NETWORK
    assert second.claimant == bob.identity


def test_declined_signing_anchors_nothing(registration, registry, blob_store, alice):
    async def refuse(payload):
        return False

    with pytest.raises(SigningDeclined):
        asyncio.run(registration.register(ARTWORK, InteractiveSigner(alice, refuse), NETWORK))
    lookup = asyncio.run(registry.read(fingerprint(ARTWORK), NETWORK))
    assert lookup.entries == []
    assert len(blob_store) == 0


def test_manifest_is_persisted_before_registry_write(registry, blob_store, registration, alice):
    written = []
    original_write = registry.write

    async def checking_write(fp, manifest_locator, claimant, network):
        written.append(await blob_store.get(manifest_locator))
        return await original_write(fp, manifest_locator, claimant, network)

    registry.write = checking_write
    asyncio.run(registration.register(ARTWORK, alice, NETWORK))
    assert len(written) == 1
    assert parse_manifest(written[0]).content_hash == fingerprint(ARTWORK)


def test_ledger_race_is_reported_with_both_claimants(registry, registration, alice, bob):
    async def scenario():
        original_write = registry.write

        async def racing_write(fp, manifest_locator, claimant, network):
            # Another process anchors the same content first
            await original_write(fp, manifest_locator, bob.identity, network)
            return await original_write(fp, manifest_locator, claimant, network)

        registry.write = racing_write
        await registration.register(ARTWORK, alice, NETWORK)

    with pytest.raises(RegistryConflict) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.existing_claimant == bob.identity
    assert excinfo.value.attempted_claimant == alice.identity


def test_register_and_bind(registration, alice):
    result = asyncio.run(registration.register_and_bind(
        ARTWORK, alice, NETWORK,
        bindings=[("youtube", "https://youtu.be/abc123"), ("vimeo", "not-a-number")],
    ))
    assert result.receipt is not None
    assert [b.ok for b in result.bindings] == [True, False]
    assert result.bindings[0].result.binding.fingerprint == result.fingerprint


def test_unknown_network(registration, alice):
    with pytest.raises(UnknownNetwork):
        asyncio.run(registration.register(ARTWORK, alice, "mars"))


def test_ledger_race_won_by_same_claimant_is_already_registered(registry, registration, alice):
    other_process_manifest = "cas://sha256/" + "0" * 64

    async def scenario():
        original_write = registry.write

        async def racing_write(fp, manifest_locator, claimant, network):
            # The same claimant anchors the content from another process first
            await original_write(fp, other_process_manifest, claimant, network)
            return await original_write(fp, manifest_locator, claimant, network)

        registry.write = racing_write
        return await registration.register(ARTWORK, alice, NETWORK)

    result = asyncio.run(scenario())
    assert result.already_registered
    assert result.receipt is None
    assert result.manifest_locator == other_process_manifest
    assert result.entry.claimant == alice.identity
