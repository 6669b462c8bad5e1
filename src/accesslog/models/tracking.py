from datetime import datetime

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from accesslog.models.base import Base, UTCDateTime, utcnow
from accesslog.models.custom_params import CustomParameters, CustomParametersType


def _params_dict(value) -> dict:
    if value is None:
        return {}
    if isinstance(value, CustomParameters):
        return value.to_dict()
    return dict(value)


class TrackingEvent(Base):
    __tablename__ = "tracking"
    __table_args__ = (
        Index("ix_tracking_app_id_timestamp", "app_id", "timestamp"),
        Index("ix_tracking_session_id", "session_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # not a foreign key: events outlive their application
    app_id: Mapped[str] = mapped_column(String(64), nullable=False)

    session_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    visitor_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    page_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    page_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    referrer: Mapped[str] = mapped_column(Text, nullable=False, default="")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    country: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    region: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    city: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    device_type: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    browser: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    os: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    language: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    custom_parameters: Mapped[CustomParameters] = mapped_column(
        CustomParametersType, nullable=False, default=dict
    )

    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "app_id": self.app_id,
            "session_id": self.session_id,
            "visitor_id": self.visitor_id,
            "page_url": self.page_url,
            "page_title": self.page_title,
            "referrer": self.referrer,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "device_type": self.device_type,
            "browser": self.browser,
            "os": self.os,
            "language": self.language,
            "timezone": self.timezone,
            "custom_parameters": _params_dict(self.custom_parameters),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
