"""
Shared utilities: logging, text normalisation and Slack request signing.
"""
