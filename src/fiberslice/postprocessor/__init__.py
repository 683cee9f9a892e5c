"""
fiberslice Post Processor Module

Serializes motion primitives into G-code with lifecycle scripts.
"""

from .gcode import GcodeEmitter, check_scripts, to_gcode

__all__ = [
    'GcodeEmitter',
    'check_scripts',
    'to_gcode',
]
