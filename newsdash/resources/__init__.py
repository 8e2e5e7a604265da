from newsdash.resources.hooks import Resource, ResourceHooks, ResourceSnapshot

__all__ = ["Resource", "ResourceHooks", "ResourceSnapshot"]
