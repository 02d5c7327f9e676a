"""
knime2sql - resolve KNIME workflow column flow and translate nodes to SQL.
"""
__version__ = "0.1.0"
