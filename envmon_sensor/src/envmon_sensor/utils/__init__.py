"""Fakes, factories and payload builders shared by the tests."""
