"""Read, edit and write Hitman: Codename 47 scene archives and their chunk, DBL, audio and pathfinding data."""

__version__ = "0.1.0"