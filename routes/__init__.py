from .vms import vms_router

__all__ = [
    "vms_router",
]
