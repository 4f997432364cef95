"""
Pose estimation utilities.

This package defines the Landmark/Skeleton data model, the PoseProvider adapter
interface (MediaPipe PoseLandmarker implementation included) and the joint-angle
engine, so the inference stack can be swapped without touching the render loop.
"""
