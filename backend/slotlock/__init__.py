"""Seller slot locking and booking service."""
