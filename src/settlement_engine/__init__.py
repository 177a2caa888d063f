"""Settlement engine: reconciles commerce orders against ACH and card settlement."""

__version__ = "0.1.0"
