"""Library for building Kubernetes operators on ConfigMaps and custom resources."""

__version__ = "0.1.0"
