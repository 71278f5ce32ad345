"""spvforge - build rust-gpu shader crates into SPIR-V with a cached backend."""

__version__ = "0.1.0"
