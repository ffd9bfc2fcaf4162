"""Test doubles for scanfleet."""
