"""User-space kqueue-style event notification: kevents, filters, knotes and queues."""

__version__ = "2.6.1"