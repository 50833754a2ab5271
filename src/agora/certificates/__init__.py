"""Participation certificates minted per vote."""
