"""
StreamGate: streaming chat-completion gateway.
"""

__version__ = "1.0.0"
