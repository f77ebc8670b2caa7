"""
codeshare - one-shot file sharing by numeric share code.

A node stores an uploaded file, hands back a short-lived share code and
binds a one-shot listener on that code's port. Any client can later fetch
the file once by presenting the code to the HTTP download bridge.
"""

__version__ = "1.0.0"
