import asyncio

import pytest

from service_catalog.form_repository import FormNotFoundError, FormRepository, create_session_factory
from service_catalog.form_store import FormStore
from service_catalog.optimistic_updates import OptimisticUpdateManager


@pytest.fixture
def session_factory(tmp_path):
    return create_session_factory(f"sqlite:///{tmp_path / 'forms.db'}")


def test_save_then_fetch(session_factory, sample_wire):
    async def scenario():
        repository = FormRepository(session_factory)
        form_id = await repository.save(FormStore.from_wire(sample_wire).to_wire(), is_enabled=True)
        fetched = await repository.fetch(form_id)
        enabled = await repository.is_enabled(form_id)
        return form_id, fetched, enabled

    form_id, fetched, enabled = asyncio.run(scenario())
    assert form_id == "form-1"
    assert fetched["serviceTree"] == sample_wire["serviceTree"]
    assert fetched["slug"] == "salon-booking"
    assert enabled is True


def test_second_save_updates_the_same_row(session_factory, sample_wire):
    async def scenario():
        repository = FormRepository(session_factory)
        await repository.save(sample_wire)
        changed = dict(sample_wire, slug="salon-v2")
        await repository.save(changed)
        return await repository.fetch("form-1")

    assert asyncio.run(scenario())["slug"] == "salon-v2"


def test_form_without_id_gets_one(session_factory, sample_wire):
    async def scenario():
        repository = FormRepository(session_factory)
        wire = dict(sample_wire)
        wire.pop("id")
        form_id = await repository.save(wire)
        return repository, form_id, await repository.fetch()

    repository, form_id, fetched = asyncio.run(scenario())
    assert form_id
    assert repository.form_id == form_id
    assert fetched["id"] == form_id


def test_fetch_missing(session_factory):
    with pytest.raises(FormNotFoundError):
        asyncio.run(FormRepository(session_factory).fetch("nope"))


def test_repository_as_sync_source(session_factory, sample_wire):
    async def scenario():
        repository = FormRepository(session_factory, form_id="form-1")
        server = dict(sample_wire, internalName="Renamed on server")
        await repository.save(server)
        store = FormStore.from_wire(sample_wire)
        manager = OptimisticUpdateManager(store)
        await manager.sync_once(repository.fetch)
        return store

    assert asyncio.run(scenario()).document.name == "Renamed on server"
