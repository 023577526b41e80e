"""I/O utilities for loading mechanisms from model files.

This module provides the model loader: it parses URDF files and converts
them to JAX-native Mechanism structures.
"""

from .urdf_parser import load_urdf

__all__ = ["load_urdf"]
