"""Diagnostic command line for hostlink."""
