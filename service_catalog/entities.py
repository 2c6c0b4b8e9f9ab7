# service_catalog/entities.py
from datetime import datetime
from typing import TypeAlias
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

UUID: TypeAlias = str
Base = declarative_base()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class BookingForm(Base, TimestampMixin):
    __tablename__ = "booking_form"

    form_id: Mapped[UUID] = mapped_column(String(64), primary_key=True, default=lambda: uuid4().hex)
    internal_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    slug: Mapped[str] = mapped_column(String(50), nullable=False, default="", index=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # nested wire document: {internalName, slug, serviceTree, baseQuestions, theme, primaryColor}
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
