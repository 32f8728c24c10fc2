"""Python wrapper for the CTA's realtime Bustime (BusTracker) API."""
from . import utils
from .interface import *
from .datatypes import *

__version__ = '0.1.0'
