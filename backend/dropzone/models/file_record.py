"""FileRecord model - share metadata (encrypted bytes live in blob storage)."""
from datetime import datetime
from sqlalchemy import String, BigInteger, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from dropzone.models.base import Base, UploadedAtMixin


class FileRecord(Base, UploadedAtMixin):
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    share_id: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    batch_id: Mapped[str | None] = mapped_column(String(32), index=True, nullable=True)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_name: Mapped[str] = mapped_column(String(100), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    iv: Mapped[str | None] = mapped_column(String(32), nullable=True)
