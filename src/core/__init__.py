"""Character Sheet Core"""
__version__ = "0.1.0-alpha"
