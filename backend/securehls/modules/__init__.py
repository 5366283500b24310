"""Application modules.

- lesson: Lesson, user and subscription models
- auth: Bearer token decoding
- transcoding: Video upload, HLS encoding job and progress
- delivery: Capability tokens, playlist rewriting, segment and key delivery
"""
