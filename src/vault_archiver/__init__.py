"""vault-archiver core library.

Crawls a published vault (or any same-origin site) politely, extracts the
readable text of each page and packages it into a one-time-download zip,
gated by robots.txt, a per-requester rate limit and a moderation block list.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
