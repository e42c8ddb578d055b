"""mrcli - Mediumroast command line tools for a GitHub hosted object store."""

__version__ = "0.1.0"

__all__ = ["__version__"]
