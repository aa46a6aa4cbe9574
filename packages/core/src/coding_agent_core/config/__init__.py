from .config import Config, create_tool_registry

__all__ = ["Config", "create_tool_registry"]
