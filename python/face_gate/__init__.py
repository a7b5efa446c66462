"""Face second factor: pose-guided enrollment, liveness-gated verification."""

__version__ = "0.1.0"
