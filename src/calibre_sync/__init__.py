"""calibre-sync: mirror a Calibre library into a book folder and keep
KOReader sidecar metadata attached to the books it describes."""

__version__ = "0.3.0"
