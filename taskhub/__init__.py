"""
TaskHub server package.

Real-time session, presence and notification core for the TaskHub
task-management backend.
"""

__version__ = "0.1.0"
