"""Roomchat: real-time rooms with presence, typing indicators and read receipts."""

__version__ = "0.1.0"
