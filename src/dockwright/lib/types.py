"""Stable domain identifier newtypes."""

from typing import NewType

SessionId = NewType("SessionId", str)
ResourceId = NewType("ResourceId", str)
