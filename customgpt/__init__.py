"""
CustomGPT console — point a chat window at any HTTP endpoint.
"""

__version__ = "0.3.0"
