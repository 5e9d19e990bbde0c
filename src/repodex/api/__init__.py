"""
HTTP surface for requesting and polling repository indexing jobs.
"""
