"""dchannel: encrypted, content-addressed feeds over a mutable name pointer."""

__version__ = "0.1.0"
