"""
Ceph RBD volume plugin for Docker.

This package exposes Ceph RBD images to a Docker host as named volumes,
mapping them through the kernel RBD driver and mounting them on first use.
"""

__version__ = "0.1.0"
__all__ = ["api", "cli"]
