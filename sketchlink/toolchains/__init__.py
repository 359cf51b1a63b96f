"""Toolchain front ends for sketchlink."""

from sketchlink.toolchains.arduino import ArduinoCli

__all__ = ["ArduinoCli"]
