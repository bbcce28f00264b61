"""Shared configuration and diagnostic logging helpers."""
