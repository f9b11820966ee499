import asyncio

import pytest

from provenance.core.errors import NotOwner, NotRegistered, RegistryConflict, UnknownNetwork
from provenance.core.registry import InMemoryRegistry
from provenance.services.bindings import BindingService
from provenance.services.registration import RegistrationService

from conftest import NETWORK, OTHER_NETWORK


def test_bind_is_idempotent(registration, bindings, alice):
    async def scenario():
        registered = await registration.register(b"song", alice, NETWORK)
        first = await bindings.bind(registered.fingerprint, "youtube",
                                    "https://youtu.be/abc123", alice.identity, NETWORK)
        second = await bindings.bind(registered.fingerprint, "youtube", "abc123",
                                     alice.identity, NETWORK)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.created and first.receipt is not None
    assert not second.created and second.receipt is None
    assert first.binding.key() == second.binding.key()


def test_only_registry_claimant_can_bind(registration, bindings, registry, alice, bob):
    async def scenario():
        registered = await registration.register(b"song", alice, NETWORK)
        with pytest.raises(NotOwner):
            await bindings.bind(registered.fingerprint, "youtube", "abc123", bob.identity, NETWORK)
        return await registry.resolve_binding("youtube", "abc123", NETWORK)

    assert asyncio.run(scenario()) is None


def test_bind_requires_registration(bindings, alice):
    with pytest.raises(NotRegistered):
        asyncio.run(bindings.bind("0x" + "12" * 32, "youtube", "abc123", alice.identity, NETWORK))


def test_bind_requires_confirmed_entry(blob_store, alice):
    async def scenario():
        registry = InMemoryRegistry(auto_confirm=False)
        service = BindingService(registry)
        registered = await RegistrationService(registry, blob_store).register(b"song", alice, NETWORK)
        with pytest.raises(NotRegistered):
            await service.bind(registered.fingerprint, "youtube", "abc123", alice.identity, NETWORK)

    asyncio.run(scenario())


def test_locator_bound_to_another_fingerprint_conflicts(registration, bindings, alice):
    async def scenario():
        first = await registration.register(b"song", alice, NETWORK)
        second = await registration.register(b"remix", alice, NETWORK)
        await bindings.bind(first.fingerprint, "youtube", "abc123", alice.identity, NETWORK)
        with pytest.raises(RegistryConflict) as excinfo:
            await bindings.bind(second.fingerprint, "youtube", "abc123", alice.identity, NETWORK)
        return first, excinfo.value

    first, conflict = asyncio.run(scenario())
    assert conflict.fingerprint == first.fingerprint


def test_bindings_are_scoped_by_network(registration, bindings, registry, alice):
    async def scenario():
        registered = await registration.register(b"song", alice, NETWORK)
        await bindings.bind(registered.fingerprint, "youtube", "abc123", alice.identity, NETWORK)
        with pytest.raises(NotRegistered):
            await bindings.bind(registered.fingerprint, "youtube", "abc123", alice.identity, OTHER_NETWORK)
        return await registry.resolve_binding("youtube", "abc123", OTHER_NETWORK)

    assert asyncio.run(scenario()) is None


def test_unknown_network(bindings, alice):
    with pytest.raises(UnknownNetwork):
        asyncio.run(bindings.bind("0x" + "12" * 32, "youtube", "abc123", alice.identity, "mars"))


def test_unbind_and_rebind(registration, bindings, registry, alice):
    async def scenario():
        registered = await registration.register(b"song", alice, NETWORK)
        fp = registered.fingerprint
        await bindings.bind(fp, "youtube", "abc123", alice.identity, NETWORK)
        moved = await bindings.rebind(fp, "youtube", "abc123", "https://youtu.be/xyz789",
                                      alice.identity, NETWORK)
        old = await registry.resolve_binding("youtube", "abc123", NETWORK)
        await bindings.unbind(fp, "youtube", "xyz789", alice.identity, NETWORK)
        return moved, old, await registry.read_bindings(fp, NETWORK)

    moved, old, remaining = asyncio.run(scenario())
    assert moved.created and moved.binding.locator == "xyz789"
    assert old is None
    assert remaining == []


def test_bind_many_reports_each_item(registration, bindings, alice):
    async def scenario():
        registered = await registration.register(b"song", alice, NETWORK)
        return await bindings.bind_many(registered.fingerprint, [
            ("youtube", "https://www.youtube.com/watch?v=abc123"),
            ("myspace", "whatever"),
            ("x", "https://x.com/artist/status/1234567890"),
            ("youtube", "abc123"),
        ], alice.identity, NETWORK)

    outcomes = asyncio.run(scenario())
    assert [o.ok for o in outcomes] == [True, False, True, True]
    assert outcomes[1].error == "unrecognized_format"
    assert outcomes[2].result.binding.locator == "1234567890"
    # The two youtube items name the same video: exactly one binding is created
    assert sorted([outcomes[0].result.created, outcomes[3].result.created]) == [False, True]


def test_binding_invalidates_cached_lookup(registration, bindings, cache, alice):
    async def scenario():
        registered = await registration.register(b"song", alice, NETWORK)
        cache.put(await registration.registry.read(registered.fingerprint, NETWORK))
        assert cache.get(registered.fingerprint, NETWORK) is not None
        await bindings.bind(registered.fingerprint, "youtube", "abc123", alice.identity, NETWORK)
        return cache.get(registered.fingerprint, NETWORK)

    assert asyncio.run(scenario()) is None


def test_list_bindings(registration, bindings, alice):
    async def scenario():
        registered = await registration.register(b"song", alice, NETWORK)
        fp = registered.fingerprint
        await bindings.bind(fp, "youtube", "abc123", alice.identity, NETWORK)
        await bindings.bind(fp, "x", "https://x.com/artist/status/42", alice.identity, NETWORK)
        listed = await bindings.list_bindings("0x" + fp[2:].upper(), NETWORK)
        elsewhere = await bindings.list_bindings(fp, OTHER_NETWORK)
        return listed, elsewhere

    listed, elsewhere = asyncio.run(scenario())
    assert [(b.platform, b.locator) for b in listed] == [("x", "42"), ("youtube", "abc123")]
    assert elsewhere == []
