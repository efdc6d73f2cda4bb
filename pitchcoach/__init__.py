"""Pitchcoach package initializer.

Sung-pitch analysis against a reference take. The analysis code lives in
``pitchcoach.pipeline``; ``pitchcoach.main`` exposes it over HTTP.
"""

__version__ = "0.1.0"
