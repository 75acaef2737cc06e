# pos_sync/__init__.py
# Description: Offline-first sync engine for a point-of-sale device.
#
__version__ = "0.1.0"
