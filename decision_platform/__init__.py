"""Policy decision platform: prioritized rules with optional arbitration."""

__version__ = "0.1.0"
