"""Tableside: client core for QR-code restaurant ordering on Supabase."""

__version__ = "0.1.0"
