"""Relay server and client implementations.

The relay tracks which participants are connected and forwards handshake
messages between them. It is not in the data path once peers are connected.
"""
from __future__ import annotations
