"""One-time secret service: store a pre-encrypted blob, read it once, then destroy it."""

__version__ = "1.0.0"
