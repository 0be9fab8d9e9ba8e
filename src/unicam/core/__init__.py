"""
Camera models: unified projection (omnidirectional) and pinhole, pluggable lens
distortion, analytic projection Jacobians and undistortion remaps.
"""
