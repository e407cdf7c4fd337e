"""Language server session layer for compiler-backed editor tooling."""

__version__ = "0.1.0"
