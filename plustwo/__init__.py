"""
plustwo
Archives +2 / -2 chat votes from Twitch broadcasts, reconciling live EventSub
delivery with the paginated comment archive.
"""

__version__ = "0.1.0"
