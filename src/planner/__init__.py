"""Itinerary planning: catalog, day selection, edit directives, guided flows and reply text."""
