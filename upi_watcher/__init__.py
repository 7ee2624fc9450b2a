"""
UPI Watcher - Automated monitoring of third-party UPI app listings.

This package provides functionality to:
- Fetch the published list of third-party UPI apps and their PSP banks
- Parse the listing table into structured entries
- Compare entries with the snapshot stored in a GitHub Gist
- Announce newly listed apps to a webhook
"""

__version__ = "1.0.0"
__author__ = "UPI Watcher Team"
