from app.core.runtime.base import RuntimeProvider
from app.core.runtime.factory import create_provider

__all__ = ["RuntimeProvider", "create_provider"]
