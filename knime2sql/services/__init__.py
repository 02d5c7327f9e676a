"""Conversion services: settings access, graph, resolution, SQL generation."""
