"""Terraform-style state reconciliation for Google Compute Engine instances."""

__version__ = "0.1.0"
