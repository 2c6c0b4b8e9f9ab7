# service_catalog/form_repository.py
"""
Reference persistence / server-fetch collaborator backed by SQLAlchemy.

save() and fetch() are coroutines; the blocking session work runs in a
worker thread through asyncio.to_thread so the editor's loop never blocks.
"""
import asyncio
import copy
import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from service_catalog.config import get_database_url
from service_catalog.entities import Base, BookingForm
from service_catalog.models import AutosaveDocument

logger = logging.getLogger("catalog_editor")


class FormNotFoundError(LookupError):
    pass


def get_db_engine(url: Optional[str] = None):
    url = url or get_database_url()
    logger.info(f"[DB] Connecting to {url.split('@')[-1]}")
    if url.startswith("postgresql+pg8000"):
        # pg8000 supports 'timeout' in seconds
        return create_engine(url, connect_args={"timeout": 10}, pool_pre_ping=True)
    return create_engine(url, future=True)


def create_session_factory(url: Optional[str] = None, create_tables: bool = True) -> sessionmaker:
    engine = get_db_engine(url)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


class FormRepository:
    def __init__(self, session_factory: sessionmaker, form_id: Optional[str] = None):
        self.session_factory = session_factory
        self.form_id = form_id

    # ---- blocking helpers (worker thread) ----

    def _save_sync(self, wire: Dict[str, Any], is_enabled: Optional[bool]) -> str:
        form_id = wire.get("id") or self.form_id
        session: Session = self.session_factory()
        try:
            row = session.get(BookingForm, form_id) if form_id else None
            if row is None:
                row = BookingForm(document=wire)
                if form_id:
                    row.form_id = form_id
                session.add(row)
            row.internal_name = wire.get("internalName") or ""
            row.slug = wire.get("slug") or ""
            row.document = copy.deepcopy(wire)
            row.revision = (row.revision or 0) + 1
            if is_enabled is not None:
                row.is_enabled = is_enabled
            session.commit()
            return row.form_id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _fetch_sync(self, form_id: str) -> Dict[str, Any]:
        session: Session = self.session_factory()
        try:
            row = session.get(BookingForm, form_id)
            if row is None:
                raise FormNotFoundError(f"Booking form not found: {form_id}")
            wire = copy.deepcopy(row.document)
            wire["id"] = row.form_id
            return wire
        finally:
            session.close()

    def _is_enabled_sync(self, form_id: str) -> bool:
        session: Session = self.session_factory()
        try:
            row = session.get(BookingForm, form_id)
            return bool(row and row.is_enabled)
        finally:
            session.close()

    # ---- collaborator API ----

    async def save(self, document: Union[AutosaveDocument, Dict[str, Any]], is_enabled: Optional[bool] = None) -> str:
        wire = document.to_wire() if isinstance(document, AutosaveDocument) else dict(document)
        form_id = await asyncio.to_thread(self._save_sync, wire, is_enabled)
        if self.form_id is None:
            self.form_id = form_id
        logger.info("[DB] saved booking form %s", form_id)
        return form_id

    async def fetch(self, form_id: Optional[str] = None) -> Dict[str, Any]:
        form_id = form_id or self.form_id
        if not form_id:
            raise FormNotFoundError("No form id to fetch")
        return await asyncio.to_thread(self._fetch_sync, form_id)

    async def is_enabled(self, form_id: Optional[str] = None) -> bool:
        return await asyncio.to_thread(self._is_enabled_sync, form_id or self.form_id)
