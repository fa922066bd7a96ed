"""
visitrack: unique visitor tracking and analytics per project.
"""
__version__ = "1.0.0"
