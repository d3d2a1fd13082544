"""Reference-guided chloroplast genome reconstruction with consensus remapping."""

__version__ = "0.1.0"
