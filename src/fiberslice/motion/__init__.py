"""
Motion module - Motion primitives and the planner that produces them.
"""

from fiberslice.motion.planner import MotionPlanner, clamp_kinematics, extrusion_amount
from fiberslice.motion.primitives import MotionPrimitive

__all__ = [
    "MotionPlanner",
    "MotionPrimitive",
    "clamp_kinematics",
    "extrusion_amount",
]
