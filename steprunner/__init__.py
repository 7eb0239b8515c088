"""steprunner: declarative, deterministic multi-step agent pipelines."""

__version__ = "0.1.0"
