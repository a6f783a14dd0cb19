"""Export your GP health record from the NHS App website to local files."""

__version__ = "0.1.0"
