"""Storefront API service."""
