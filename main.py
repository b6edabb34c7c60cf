from backend.main import app

__all__ = ["app"]
