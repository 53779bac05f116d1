"""Import all models so SQLAlchemy metadata knows about them."""
from dropzone.models.base import Base
from dropzone.models.file_record import FileRecord

__all__ = ["Base", "FileRecord"]
