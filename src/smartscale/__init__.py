"""
SmartScale: autoscaling control loop for self-managed k3s clusters
"""

__version__ = "1.0.0"
