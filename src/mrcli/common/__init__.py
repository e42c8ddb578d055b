"""Shared building blocks used across mrcli."""
