"""EquiProfile access backend: account entitlement enforcement and billing state."""

__version__ = "0.1.0"
