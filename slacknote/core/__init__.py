"""Typed core: domain models, ports and errors."""
