"""Expiry classification and daily notification scheduling."""
