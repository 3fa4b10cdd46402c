"""Configuration for the blue-green manager."""

from bluegreen_manager.config.settings import BlueGreenConfig

__all__ = ["BlueGreenConfig"]
