"""InfyMailer real-time email metrics service."""

__version__ = "0.1.0"
