"""
HTTP surface: Slack Events endpoint, discussions API and health check.
"""
