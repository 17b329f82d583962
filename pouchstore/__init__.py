"""Storage offers and agreements, Pouch quota metadata, file manifests, a fragment index and chunk encryption."""

__version__ = "0.1.0"

__all__ = ["agreement", "encryption", "fragment", "manifest", "meta"]