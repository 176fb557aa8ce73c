"""Gavin reporting: read-only rendering of store contents.

Modules
-------
renderer
    ``InspectionRenderer`` turns run summaries, inspection records and
    usage aggregates into Rich renderables for terminal display.
"""
