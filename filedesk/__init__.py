"""FileDesk: per-user file storage behind session-based access control."""

__version__ = "1.0.0"
