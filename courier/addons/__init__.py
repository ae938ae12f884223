"""Loadable add-on units.

Files here are fetched and executed by the add-on loader, not imported.
Each defines setup(host) and exposes its public object under its global marker.
"""
