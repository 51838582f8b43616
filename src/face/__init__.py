"""Face identity matching building blocks (gallery/matcher).

Descriptors come from an external inference step; this package only
normalizes them and resolves a query against an enrollment snapshot.
"""
