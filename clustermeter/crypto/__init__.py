"""Encryption of unit prices carried in configuration."""

from clustermeter.crypto.cipher import PriceCipher

__all__ = ["PriceCipher"]
