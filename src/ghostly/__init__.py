"""Ghostly Memory Bank - terminal-native memory layer.

Turns a stream of shell command events into problem/fix episodes and
surfaces the most relevant past episode when a similar situation recurs.
"""

__version__ = "0.1.0"
