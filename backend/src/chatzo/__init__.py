"""Chatzo streaming chat backend."""
