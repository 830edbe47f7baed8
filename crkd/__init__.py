"""
CRKD - auxiliary daemon for the Crime Report Kenya platform.

This package contains the server-side components that sit next to the hosted
document store: transactional e-mail dispatch behind a small HTTP API and the
scheduled retention sweep that purges closed reports.
"""

__version__ = "0.1.0"
