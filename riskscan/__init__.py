"""riskscan - web application vulnerability scanner with deterministic scoring."""

__version__ = "1.0.0"

from .scanner import run_scan  # noqa: E402

__all__ = ["run_scan", "__version__"]
