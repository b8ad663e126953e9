"""dsonrig: DSON character loading and dual-quaternion skinning buffers."""

__version__ = "0.1.0"
