"""
Services package for EPG Sync Service

This package contains the sync engine and the service layer components.
"""
