"""Image Builder - manifest-driven container image build orchestration.

This package tracks multi-platform container images described by a
declarative manifest: it decides which images are stale, which builds can
be served from previously published images, and merges the resulting
build ledgers.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
