"""
Core domain: record models, scoring, error classification and configuration.
"""
