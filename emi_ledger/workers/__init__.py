"""Background and one-off workers."""
from .seed import SeedResult, seed_database

__all__ = ["SeedResult", "seed_database"]
