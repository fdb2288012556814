"""CampusMind two-factor authentication engine (TOTP + backup codes)."""

__version__ = "0.1.0"
