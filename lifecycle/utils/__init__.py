"""Shared utilities: structured logging and UTC time helpers."""
