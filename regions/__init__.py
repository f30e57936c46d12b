from .registry import RegionNotFoundError, RegionProfile, RegionRegistry

__all__ = ["RegionNotFoundError", "RegionProfile", "RegionRegistry"]
