"""rangefuse: multiscale ICP registration and surfel fusion for range data."""

__version__ = "0.1.0"
