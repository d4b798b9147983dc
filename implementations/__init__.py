from .registry import VMRegistry

__all__ = [
    "VMRegistry",
]
