"""SignBridge: Pipefy card to D4Sign contract automation."""

__version__ = "0.1.0"
