"""OpenWrt Firmware Builder - drive the Image Builder for fixed router targets.

This package downloads and caches the official OpenWrt/ImmortalWrt Image
Builder, prepares a customized working tree, and builds one firmware image
per tunnel variant.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
