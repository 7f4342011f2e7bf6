"""
Minutes Sync - Directory user fetching and action item notifications for meeting minutes.

This package provides the glue between a meeting-minutes application, the LDAP
directory that supplies its users, and the mail system that notifies people
responsible for open action items.
"""

__version__ = "1.0.0"
__author__ = "Minutes Sync Team"
