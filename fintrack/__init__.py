"""Personal-finance tracker background scheduler package."""

from . import db

__all__ = [
    'db',
]
