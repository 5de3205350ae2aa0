from mailtree.components.registry import ComponentRegistry, ComponentSpec, default_registry

__all__ = ["ComponentRegistry", "ComponentSpec", "default_registry"]
