"""Create an AKS user node pool, falling back through a priority list of VM sizes."""

from __future__ import annotations

__version__ = "1.0.0"
