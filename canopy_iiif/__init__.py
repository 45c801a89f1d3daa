"""
Builds static "work" pages from a IIIF Collection.

Walks a (possibly nested, possibly remote) IIIF collection, resolves each manifest from an
on-disk cache or the network, renders one page per manifest, and emits search records.
"""

__version__ = '0.1.0'
