from datetime import datetime

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from accesslog.models.base import Base, UTCDateTime, utcnow


class Application(Base):
    __tablename__ = "applications"

    app_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # secret: never log it
    api_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    domain: Mapped[str] = mapped_column(String(253), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class ApplicationSnapshot(BaseModel):
    """Detached copy of an application row, safe to cache and to pass around."""

    model_config = ConfigDict(from_attributes=True)

    app_id: str
    api_key: str
    name: str
    description: str = ""
    domain: str
    active: bool = True
    created_at: datetime
    updated_at: datetime
