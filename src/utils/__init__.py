"""
Helpers shared by the capture pipeline and the CLI.
"""
