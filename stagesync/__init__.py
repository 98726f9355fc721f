"""
StageSync

Stage group and email changes for a course, review them, then publish
them to the course backend in one batch.
"""
__version__ = "1.0.0"
