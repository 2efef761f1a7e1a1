"""buildmatrix: matrix CI runner (fetch toolchains, stage native deps, build and test per target triple)."""

__version__ = "0.1.0"
