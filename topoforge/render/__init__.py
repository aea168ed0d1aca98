"""Topoforge plan rendering — read-only views over an assembled deployment.

Modules
-------
renderer
    ``PlanRenderer`` turns a ``Deployment`` (or the violations that kept
    one from assembling) into Rich renderables for terminal display.
"""
