"""Database models for backend configuration."""

from sqlalchemy import Boolean, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from transcriptflow.core.database.base import Base, TimestampMixin, UUIDMixin


class ApiConfig(Base, UUIDMixin, TimestampMixin):
    """Stored backend connection settings; at most one active row per type."""

    __tablename__ = "api_configs"

    api_type: Mapped[str] = mapped_column(String(20), nullable=False)
    api_url: Mapped[str | None] = mapped_column(String(1024))
    api_key: Mapped[str | None] = mapped_column(String(512))
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    timeout: Mapped[float] = mapped_column(Float, default=30)  # seconds
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (Index("idx_api_configs_type_active", "api_type", "is_active"),)

    def __repr__(self) -> str:
        return f"<ApiConfig {self.api_type} active={self.is_active}>"
