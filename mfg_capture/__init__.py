# mfg_capture/__init__.py
# Offline-first capture store with bidirectional sync for manufacturing records.
__version__ = "0.1.0"
