"""
Data models for license validation and attack pattern analysis.
"""
