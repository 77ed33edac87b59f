"""
Edge relay: path-based reverse proxy in front of an API upstream and a
single-page-application bundle, with unbuffered relay of event streams.
"""
