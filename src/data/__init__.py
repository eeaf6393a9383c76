"""
Data Generation Module
"""
from .generators import DataGenerator, StoreDayGenerator

__all__ = [
    "DataGenerator",
    "StoreDayGenerator",
]
