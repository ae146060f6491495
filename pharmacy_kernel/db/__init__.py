"""Database layer: declarative base, async engine, immutability listeners."""
