"""
Gantry: build-and-publish orchestration for user-submitted web projects.

Turns a project reference (repository, archive, or inline markup) into a
hosted static artifact while streaming build progress to live viewers.
"""

__version__ = "0.3.0"
