from .session import Pop3Session, build_structure, locate_part, raw_part_bytes

__all__ = ["Pop3Session", "build_structure", "locate_part", "raw_part_bytes"]
