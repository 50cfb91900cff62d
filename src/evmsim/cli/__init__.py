"""
evmsim command-line interface.
"""
