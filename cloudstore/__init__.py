"""
cloudstore - cached object storage client

Open objects in a remote bucket as local files, stream reads and writes,
and list large buckets page by page. Backends are chosen by name from a
registry; "localfs" and "s3" ship built in.
"""

__version__ = "1.0.0"
