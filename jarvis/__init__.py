"""Jarvis voice assistant core."""
