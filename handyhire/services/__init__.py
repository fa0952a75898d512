"""Escrow/payment lifecycle services."""
