"""Storefront order compensation service."""
