"""
DynaMouse - one cursor, many pointing devices

Binds each pointing device to a display and hands the shared cursor to
whichever device moved last, placing it back where that device left it.
"""

__version__ = "0.1.0"
