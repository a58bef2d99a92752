"""
Smart Input - Source Package

Turns voice notes, receipt photos and free text into financial
transactions owned by a single user.

DESIGN PRINCIPLES:
1. Parsers only propose drafts - they never write
2. Money is integer minor units, never floats
3. Every lookup is scoped to the acting user
4. Events fire only after the write is committed
5. Storage and the AI capability are swappable
"""

__version__ = "1.0.0"
__author__ = "Smart Input Team"
