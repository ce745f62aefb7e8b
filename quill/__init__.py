"""
quill: a small embeddable scripting language.

Compile a script with host-defined native functions, then run it to
completion or step through it one instruction at a time.
"""

from .datatypes import *
from .embed import *
from .errors import *
from .natives import *
