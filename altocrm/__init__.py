"""AltoCRM — lead storage, pipeline board, field locks, and a polled job queue."""

__version__ = "0.1.0"
