"""
meerkat - home notification bot
"""
__version__ = "1.0.0"
