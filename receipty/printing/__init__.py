"""
Printing subsystem for receipty.

This package groups printer-related functionality:

- payload: ESC/POS byte encoding for text, raster images and footers
- status: decoding of DLE EOT status responses
- transport: USB and Ethernet device drivers
- client: print / status / control over one transport, with network retry
- worker: single-worker job queue

For convenience, common names are re-exported for easy import.
"""

from .client import *
from .errors import *
from .payload import *
from .status import *
from .transport import *
from .worker import *
