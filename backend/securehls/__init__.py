"""Secure HLS lesson video backend.

Converts uploaded lesson videos into encrypted multi-rendition HLS and serves
them to authorized viewers through short-lived capability tokens.

Modules:
    - core: Configuration, database, Redis, Celery, logging and metrics
    - modules.lesson: Lesson, user and subscription models
    - modules.auth: Bearer token decoding for viewers
    - modules.transcoding: Upload, HLS encoding job and progress
    - modules.delivery: Capability tokens and the delivery gateway
"""

__version__ = "0.1.0"
