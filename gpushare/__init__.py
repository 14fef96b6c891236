"""Configuration model and node-side helpers for sharing NVIDIA GPUs in Kubernetes."""

__version__ = "0.17.1"

__all__ = ["__version__"]